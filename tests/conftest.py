# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for Edge GC tests.

Provides a temporary SQLite store with the cleanup schema, a fake S3
client recording calls and injecting failures, test configuration and
helpers to create fleet rows.
"""

import tempfile
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Generator, Iterable, List, Tuple

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

BUCKET = "test-bucket"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest_asyncio.fixture
async def db(temp_dir: Path):
    """Create a temporary SQLite store with the cleanup schema."""
    from edgegc.db import SQLiteDatabase, init_schema

    database = SQLiteDatabase(temp_dir / "edge.db")
    await init_schema(database)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def legacy_db(temp_dir: Path):
    """Create a temporary SQLite store carrying the legacy repos.commit_id column."""
    from edgegc.db import SQLiteDatabase, init_schema

    database = SQLiteDatabase(temp_dir / "legacy.db")
    await init_schema(database, legacy_repo_commit_column=True)
    yield database
    await database.close()


# ============================================================================
# Fake S3
# ============================================================================


def client_error(code: str = "InternalError", operation: str = "DeleteObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "injected"}}, operation)


class _FakePaginator:
    def __init__(self, client: "FakeS3Client"):
        self._client = client

    def paginate(self, Bucket: str, Prefix: str = ""):
        return self._pages(Bucket, Prefix)

    async def _pages(self, bucket: str, prefix: str):
        self._client.calls.append(("list_objects_v2", prefix))
        self._client.maybe_fail()
        keys = sorted(k for k in self._client.objects if k.startswith(prefix))
        # Two objects per page so multi-page listings are exercised
        for start in range(0, len(keys), 2):
            yield {"Contents": [{"Key": k} for k in keys[start : start + 2]]}


class FakeS3Client:
    """
    In-memory stand-in for an aiobotocore S3 client.

    Records every call in ``calls`` and fails the next ``failures``
    calls with ``error``.
    """

    def __init__(self, objects: Iterable[str] = ()):
        self.objects = set(objects)
        self.calls: List[Tuple[str, Any]] = []
        self.failures = 0
        self.error: Exception = client_error()

    def fail_next(self, count: int, error: Exception | None = None) -> None:
        self.failures = count
        if error is not None:
            self.error = error

    def maybe_fail(self) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise self.error

    def calls_of(self, operation: str) -> List[Any]:
        return [arg for op, arg in self.calls if op == operation]

    async def delete_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append(("delete_object", Key))
        self.maybe_fail()
        self.objects.discard(Key)
        return {}

    async def delete_objects(self, Bucket: str, Delete: dict) -> dict:
        keys = [obj["Key"] for obj in Delete["Objects"]]
        self.calls.append(("delete_objects", keys))
        self.maybe_fail()
        for key in keys:
            self.objects.discard(key)
        return {"Deleted": [{"Key": k} for k in keys]}

    def get_paginator(self, name: str) -> _FakePaginator:
        assert name == "list_objects_v2"
        return _FakePaginator(self)


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def storage(fake_s3: FakeS3Client):
    """Reclaimer over the fake client with millisecond retry delays."""
    from edgegc.storage import StorageReclaimer

    return StorageReclaimer(fake_s3, BUCKET, attempts=3, retry_delay=1, delay_unit=0.001)


# ============================================================================
# Configuration and flags
# ============================================================================


@pytest.fixture
def test_config(temp_dir: Path):
    """Create a test configuration pointing at the temporary store."""
    from edgegc.config import ReclaimConfig

    return ReclaimConfig(
        bucket=BUCKET,
        database_url=f"sqlite:///{temp_dir / 'edge.db'}",
        delete_attempts=3,
        delete_retry_delay=1,
        delay_unit_seconds=0.001,
    )


@pytest.fixture
def all_flags():
    """Feature flags with every cleanup job enabled."""
    from edgegc import features

    provider = features.StaticFlagProvider(
        [
            features.CLEANUP_DELETE_IMAGES.name,
            features.CLEANUP_IMAGES.name,
            features.CLEANUP_DEVICES.name,
            features.CLEANUP_ORPHAN_COMMITS.name,
        ]
    )
    return features.FeatureFlags(provider, environ={})


@pytest.fixture
def no_flags():
    """Feature flags with every cleanup job disabled."""
    from edgegc.features import FeatureFlags, StaticFlagProvider

    return FeatureFlags(StaticFlagProvider(), environ={})


# ============================================================================
# Row helpers
# ============================================================================


def days_ago(days: int) -> datetime:
    return datetime.now(UTC) - timedelta(days=days)


async def insert(db, table: str, **values: Any) -> int:
    """Insert a row and return its id."""
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    async with db.transaction() as tx:
        await tx.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", *values.values()
        )
        return await tx.fetchval("SELECT last_insert_rowid()")


async def count_rows(db, table: str, where: str = "", *args: Any) -> int:
    sql = f"SELECT COUNT(*) FROM {table}"
    if where:
        sql += f" WHERE {where}"
    return await db.fetchval(sql, *args)


async def row_exists(db, table: str, row_id: int) -> bool:
    return await count_rows(db, table, "id = ?", row_id) == 1


async def fetch_row(db, table: str, row_id: int) -> dict:
    rows = await db.fetch(f"SELECT * FROM {table} WHERE id = ?", row_id)
    return rows[0]


async def create_repo(db, url: str = "", status: str = "SUCCESS") -> int:
    return await insert(db, "repos", url=url, status=status)


async def create_commit(
    db,
    status: str = "SUCCESS",
    tar_url: str = "",
    repo_id: int | None = None,
    org_id: str = "org-1",
) -> int:
    return await insert(
        db,
        "commits",
        org_id=org_id,
        status=status,
        image_build_tar_url=tar_url,
        repo_id=repo_id,
    )


async def create_device(
    db, deleted: bool = True, image_id: int | None = None, org_id: str = "org-1"
) -> int:
    return await insert(
        db,
        "devices",
        org_id=org_id,
        uuid=f"uuid-{datetime.now(UTC).timestamp()}",
        image_id=image_id,
        deleted_at=days_ago(1) if deleted else None,
    )


async def create_update(
    db,
    commit_id: int | None = None,
    repo_id: int | None = None,
    device_ids: Iterable[int] = (),
    dispatch_device_ids: Iterable[int] = (),
    old_commit_ids: Iterable[int] = (),
    org_id: str = "org-1",
) -> int:
    """
    Create an update transaction.

    device_ids are linked directly; dispatch_device_ids only through a
    dispatch record.
    """
    update_id = await insert(
        db, "update_transactions", org_id=org_id, commit_id=commit_id, repo_id=repo_id
    )
    for device_id in device_ids:
        await db.execute(
            "INSERT INTO updatetransaction_devices (update_transaction_id, device_id) VALUES (?, ?)",
            update_id,
            device_id,
        )
    for device_id in dispatch_device_ids:
        record_id = await insert(db, "dispatch_records", device_id=device_id, status="SUCCESS")
        await db.execute(
            "INSERT INTO updatetransaction_dispatchrecords "
            "(update_transaction_id, dispatch_record_id) VALUES (?, ?)",
            update_id,
            record_id,
        )
    for old_commit_id in old_commit_ids:
        await db.execute(
            "INSERT INTO updatetransaction_commits (update_transaction_id, commit_id) VALUES (?, ?)",
            update_id,
            old_commit_id,
        )
    return update_id


async def create_image(
    db,
    name: str = "image",
    status: str = "SUCCESS",
    deleted: bool = False,
    updated_days_ago: int = 0,
    commit_id: int | None = None,
    installer_id: int | None = None,
    image_set_id: int | None = None,
    org_id: str = "org-1",
) -> int:
    return await insert(
        db,
        "images",
        org_id=org_id,
        name=name,
        status=status,
        commit_id=commit_id,
        installer_id=installer_id,
        image_set_id=image_set_id,
        created_at=days_ago(updated_days_ago),
        updated_at=days_ago(updated_days_ago),
        deleted_at=days_ago(0) if deleted else None,
    )


async def create_built_image(
    db,
    deleted: bool = True,
    status: str = "SUCCESS",
    artifact_status: str = "SUCCESS",
    image_set_id: int | None = None,
    image_id_tag: str = "1",
) -> dict:
    """
    Create an image with its commit, repo, installer and image set.

    Returns:
        Dict of the created ids and artifact URLs
    """
    base = f"https://{BUCKET}.s3.amazonaws.com/org-1/images/{image_id_tag}"
    repo_url = f"{base}/repo"
    tar_url = f"{base}/commit.tar"
    iso_url = f"{base}/installer.iso"

    if image_set_id is None:
        image_set_id = await insert(db, "image_sets", org_id="org-1", name="set")
    repo_id = await create_repo(db, url=repo_url, status=artifact_status)
    commit_id = await create_commit(db, status=artifact_status, tar_url=tar_url, repo_id=repo_id)
    installer_id = await insert(
        db, "installers", org_id="org-1", status=artifact_status, image_build_iso_url=iso_url
    )
    image_id = await create_image(
        db,
        status=status,
        deleted=deleted,
        commit_id=commit_id,
        installer_id=installer_id,
        image_set_id=image_set_id,
    )
    package_id = await insert(db, "installed_packages", name="bash", version="5.2")
    await db.execute(
        "INSERT INTO commit_installed_packages (commit_id, installed_package_id) VALUES (?, ?)",
        commit_id,
        package_id,
    )
    await db.execute(
        "INSERT INTO images_packages (image_id, package_id) VALUES (?, ?)", image_id, 1
    )
    return {
        "image_id": image_id,
        "image_set_id": image_set_id,
        "commit_id": commit_id,
        "repo_id": repo_id,
        "installer_id": installer_id,
        "package_id": package_id,
        "repo_url": repo_url,
        "tar_url": tar_url,
        "iso_url": iso_url,
    }
