# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Image retention - soft-deletes images that are no longer wanted.

Images of a soft-deleted image set are soft-deleted first. Then images
older than the retention window that no device runs are soft-deleted,
except those whose name starts with a keep-list prefix (case-insensitive).
The image reclamation job later hard-deletes what this stage marks.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, List, Sequence, Tuple

import structlog

from edgegc.config import ReclaimConfig
from edgegc.db.connection import Database
from edgegc.exceptions import DatabaseError, FeatureDisabledError
from edgegc.features import CLEANUP_DELETE_IMAGES, FeatureFlags

logger = structlog.get_logger()

ORPHAN_IMAGES_SQL = """
UPDATE images SET deleted_at = ?
WHERE images.id IN (
    SELECT images.id FROM images
    JOIN image_sets ON image_sets.id = images.image_set_id
    WHERE images.deleted_at IS NULL AND image_sets.deleted_at IS NOT NULL
)
"""


@dataclass
class RetentionResult:
    """Number of images soft-deleted by each retention step."""

    orphan_images: int = 0
    expired_images: int = 0


def _like_prefix(name: str) -> str:
    escaped = name.upper().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


def expired_images_sql(names_to_keep: Sequence[str]) -> Tuple[str, List[Any]]:
    """
    Build the soft-delete statement for expired images.

    Returns:
        The statement and the keep-list parameters, to be passed after
        the deletion timestamp and the retention cutoff
    """
    sql = """
UPDATE images SET deleted_at = ?
WHERE images.id IN (
    SELECT images.id FROM images
    LEFT JOIN devices ON devices.image_id = images.id
    WHERE images.deleted_at IS NULL
        AND devices.id IS NULL
        AND images.updated_at < ?"""
    params: List[Any] = []
    for name in names_to_keep:
        sql += "\n        AND upper(images.name) NOT LIKE ? ESCAPE '\\'"
        params.append(_like_prefix(name))
    sql += "\n)"
    return sql, params


async def delete_orphan_images(db: Database, now: datetime | None = None) -> int:
    """
    Soft-delete live images whose image set is soft deleted.

    Returns:
        Number of images soft-deleted

    Raises:
        DatabaseError: If the update fails
    """
    now = now or datetime.now(UTC)
    try:
        count = await db.execute(ORPHAN_IMAGES_SQL, now)
    except Exception as e:
        logger.error("orphan_images_delete_failed", error=str(e))
        raise DatabaseError(f"Failed to delete orphan images: {e}") from e

    logger.info("orphan_images_deleted", images_deleted=count)
    return count


async def delete_images(
    db: Database,
    retention_days: int = 7,
    names_to_keep: Sequence[str] = (),
    now: datetime | None = None,
) -> int:
    """
    Soft-delete images older than the retention window that no device uses.

    Args:
        db: Relational store
        retention_days: Images updated within this many days are kept
        names_to_keep: Name prefixes never deleted (case-insensitive)
        now: Reference time (default: current UTC time)

    Returns:
        Number of images soft-deleted

    Raises:
        DatabaseError: If the update fails
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=retention_days)
    sql, keep_params = expired_images_sql(names_to_keep)

    try:
        count = await db.execute(sql, now, cutoff, *keep_params)
    except Exception as e:
        logger.error("images_delete_failed", error=str(e))
        raise DatabaseError(
            f"Failed to delete images: {e}",
            details={"retention_days": retention_days},
        ) from e

    logger.info("images_deleted", images_deleted=count, retention_days=retention_days)
    return count


async def delete_all_images(
    db: Database,
    config: ReclaimConfig,
    flags: FeatureFlags,
    now: datetime | None = None,
) -> RetentionResult:
    """
    Run both retention steps.

    Raises:
        FeatureDisabledError: If the delete images flag is disabled
        DatabaseError: If a step fails
    """
    if not flags.is_enabled(CLEANUP_DELETE_IMAGES):
        logger.warning("delete_images_disabled", flag=CLEANUP_DELETE_IMAGES.name)
        raise FeatureDisabledError(
            "Delete images cleanup is not available",
            details={"flag": CLEANUP_DELETE_IMAGES.name},
        )

    result = RetentionResult()
    result.orphan_images = await delete_orphan_images(db, now)
    result.expired_images = await delete_images(
        db,
        retention_days=config.image_retention_days,
        names_to_keep=config.image_names_to_keep,
        now=now,
    )
    return result
