# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Reference schema of the tables the cleanup jobs read and delete.

Production databases are migrated by the fleet-management API; this DDL
exists for tests and local runs. It is idempotent and safe to call
multiple times.
"""

from typing import List

import structlog

from edgegc.db.connection import Database
from edgegc.exceptions import DatabaseError

logger = structlog.get_logger()

_ID_COLUMN = {
    "sqlite": "id INTEGER PRIMARY KEY AUTOINCREMENT",
    "postgres": "id BIGSERIAL PRIMARY KEY",
}

_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS image_sets (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS repos (
        {id},
        url TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE{legacy_repo_columns}
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commits (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        image_build_tar_url TEXT NOT NULL DEFAULT '',
        repo_id BIGINT,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS installed_packages (
        {id},
        name TEXT NOT NULL DEFAULT '',
        version TEXT NOT NULL DEFAULT '',
        arch TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS commit_installed_packages (
        commit_id BIGINT NOT NULL,
        installed_package_id BIGINT NOT NULL,
        PRIMARY KEY (commit_id, installed_package_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS installers (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        image_build_iso_url TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS images (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        version INTEGER NOT NULL DEFAULT 1,
        commit_id BIGINT,
        installer_id BIGINT,
        image_set_id BIGINT,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS images_packages (
        image_id BIGINT NOT NULL,
        package_id BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS images_repos (
        image_id BIGINT NOT NULL,
        third_party_repo_id BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS images_custom_packages (
        image_id BIGINT NOT NULL,
        package_id BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS devices (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        uuid TEXT NOT NULL DEFAULT '',
        image_id BIGINT,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS device_groups (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS device_groups_devices (
        device_group_id BIGINT NOT NULL,
        device_id BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dispatch_records (
        {id},
        device_id BIGINT,
        status TEXT NOT NULL DEFAULT '',
        playbook_dispatcher_id TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS update_transactions (
        {id},
        org_id TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT '',
        commit_id BIGINT,
        repo_id BIGINT,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        deleted_at TIMESTAMP WITH TIME ZONE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS updatetransaction_devices (
        update_transaction_id BIGINT NOT NULL,
        device_id BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS updatetransaction_commits (
        update_transaction_id BIGINT NOT NULL,
        commit_id BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS updatetransaction_dispatchrecords (
        update_transaction_id BIGINT NOT NULL,
        dispatch_record_id BIGINT NOT NULL
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_devices_deleted_at ON devices(deleted_at)",
    "CREATE INDEX IF NOT EXISTS idx_images_commit_id ON images(commit_id)",
    "CREATE INDEX IF NOT EXISTS idx_update_transactions_commit_id ON update_transactions(commit_id)",
    "CREATE INDEX IF NOT EXISTS idx_dispatch_records_device_id ON dispatch_records(device_id)",
]


def schema_statements(dialect: str, legacy_repo_commit_column: bool = False) -> List[str]:
    """Return the DDL statements for a dialect ('sqlite' or 'postgres')."""
    id_column = _ID_COLUMN[dialect]
    legacy = ",\n        commit_id BIGINT" if legacy_repo_commit_column else ""
    statements = [
        table.format(id=id_column, legacy_repo_columns=legacy).strip() for table in _TABLES
    ]
    return statements + _INDEXES


async def init_schema(db: Database, legacy_repo_commit_column: bool = False) -> None:
    """
    Create the cleanup tables if they don't exist.

    Args:
        db: Relational store
        legacy_repo_commit_column: Also create the legacy repos.commit_id column
    """
    try:
        async with db.transaction() as tx:
            for statement in schema_statements(db.dialect, legacy_repo_commit_column):
                await tx.execute(statement)
    except Exception as e:
        raise DatabaseError(
            f"Failed to initialize schema: {e}",
            details={"dialect": db.dialect},
        ) from e

    logger.info("schema_initialized", dialect=db.dialect)
