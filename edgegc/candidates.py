# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Candidate Query Layer - Read-only discovery of reclamation candidates.

Every query is ordered by primary key and capped by a page size. Cleanup
removes or transitions the rows it processes, so each page is read from
the start of the result set again rather than with an offset.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, List, Type, TypeVar

import structlog

from edgegc.config import STATUS_ERROR, STATUS_SUCCESS
from edgegc.db.connection import Database
from edgegc.exceptions import QueryError

logger = structlog.get_logger()

T = TypeVar("T")


def _from_row(cls: Type[T], row: Dict[str, Any]) -> T:
    return cls(**{f.name: row.get(f.name) for f in fields(cls)})


@dataclass(frozen=True)
class CandidateDevice:
    """A soft-deleted device, paired with at most one of its update transactions."""

    device_id: int
    org_id: str | None = None
    device_deleted_at: Any = None
    update_id: int | None = None
    repo_id: int | None = None
    repo_status: str | None = None
    repo_url: str | None = None
    commit_id: int | None = None
    image_id: int | None = None
    commit_repo_id: int | None = None
    commit_repo_status: str | None = None
    commit_repo_url: str | None = None

    @property
    def is_soft_deleted(self) -> bool:
        return self.device_deleted_at is not None

    def log_context(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "org_id": self.org_id,
            "update_id": self.update_id,
            "repo_id": self.repo_id,
            "repo_url": self.repo_url,
            "commit_id": self.commit_id,
        }


@dataclass(frozen=True)
class CandidateImage:
    """An image to reclaim, with its commit, repo and installer artifacts."""

    image_id: int
    org_id: str | None = None
    image_status: str | None = None
    image_deleted_at: Any = None
    image_set_id: int | None = None
    commit_id: int | None = None
    commit_status: str | None = None
    commit_tar_url: str | None = None
    repo_id: int | None = None
    repo_status: str | None = None
    repo_url: str | None = None
    installer_id: int | None = None
    installer_status: str | None = None
    installer_iso_url: str | None = None

    @property
    def is_soft_deleted(self) -> bool:
        return self.image_deleted_at is not None

    def log_context(self) -> Dict[str, Any]:
        return {
            "image_id": self.image_id,
            "org_id": self.org_id,
            "commit_id": self.commit_id,
            "repo_id": self.repo_id,
            "installer_id": self.installer_id,
        }


@dataclass(frozen=True)
class OrphanCommitCandidate:
    """A commit referenced by no image and no update transaction."""

    commit_id: int
    org_id: str | None = None
    repo_id: int | None = None
    repo_url: str | None = None
    repo_status: str | None = None

    def log_context(self) -> Dict[str, Any]:
        return {
            "commit_id": self.commit_id,
            "org_id": self.org_id,
            "repo_id": self.repo_id,
            "repo_url": self.repo_url,
        }


_DEVICE_COLUMNS = """
    devices.id AS device_id,
    devices.org_id AS org_id,
    devices.deleted_at AS device_deleted_at,
    update_transactions.id AS update_id,
    repos.id AS repo_id,
    repos.status AS repo_status,
    repos.url AS repo_url,
    update_transactions.commit_id AS commit_id,
    images.id AS image_id,
    commits.repo_id AS commit_repo_id,
    commit_repos.status AS commit_repo_status,
    commit_repos.url AS commit_repo_url
"""

ORPHAN_DEVICE_UPDATES_SQL = f"""
SELECT {_DEVICE_COLUMNS}
FROM devices
JOIN dispatch_records ON dispatch_records.device_id = devices.id
JOIN updatetransaction_dispatchrecords
    ON updatetransaction_dispatchrecords.dispatch_record_id = dispatch_records.id
JOIN update_transactions
    ON update_transactions.id = updatetransaction_dispatchrecords.update_transaction_id
LEFT JOIN updatetransaction_devices
    ON updatetransaction_devices.update_transaction_id = updatetransaction_dispatchrecords.update_transaction_id
LEFT JOIN repos ON repos.id = update_transactions.repo_id
LEFT JOIN images ON images.commit_id = update_transactions.commit_id
LEFT JOIN commits ON commits.id = update_transactions.commit_id
LEFT JOIN repos AS commit_repos ON commit_repos.id = commits.repo_id
WHERE devices.deleted_at IS NOT NULL AND updatetransaction_devices.device_id IS NULL
ORDER BY devices.id ASC, update_transactions.id ASC
LIMIT ?
"""

DEVICE_CANDIDATES_SQL = f"""
SELECT {_DEVICE_COLUMNS}
FROM devices
LEFT JOIN updatetransaction_devices ON updatetransaction_devices.device_id = devices.id
LEFT JOIN update_transactions
    ON update_transactions.id = updatetransaction_devices.update_transaction_id
LEFT JOIN repos ON repos.id = update_transactions.repo_id
LEFT JOIN images ON images.commit_id = update_transactions.commit_id
LEFT JOIN commits ON commits.id = update_transactions.commit_id
LEFT JOIN repos AS commit_repos ON commit_repos.id = commits.repo_id
WHERE devices.deleted_at IS NOT NULL
ORDER BY devices.id ASC, update_transactions.id ASC
LIMIT ?
"""

IMAGE_CANDIDATES_SQL = f"""
SELECT
    images.id AS image_id,
    images.org_id AS org_id,
    images.status AS image_status,
    images.deleted_at AS image_deleted_at,
    images.image_set_id AS image_set_id,
    commits.id AS commit_id,
    commits.status AS commit_status,
    commits.image_build_tar_url AS commit_tar_url,
    repos.id AS repo_id,
    repos.status AS repo_status,
    repos.url AS repo_url,
    installers.id AS installer_id,
    installers.status AS installer_status,
    installers.image_build_iso_url AS installer_iso_url
FROM images
JOIN commits ON images.commit_id = commits.id
JOIN installers ON images.installer_id = installers.id
LEFT JOIN repos ON commits.repo_id = repos.id
WHERE images.deleted_at IS NOT NULL
    OR (
        images.status = '{STATUS_ERROR}'
        AND (
            repos.status = '{STATUS_SUCCESS}'
            OR commits.status = '{STATUS_SUCCESS}'
            OR installers.status = '{STATUS_SUCCESS}'
        )
    )
ORDER BY images.id ASC
LIMIT ?
"""

_ORPHAN_COMMITS_SELECT = """
SELECT
    commits.id AS commit_id,
    commits.org_id AS org_id,
    commits.repo_id AS repo_id,
    repos.url AS repo_url,
    repos.status AS repo_status
FROM commits
LEFT JOIN images ON images.commit_id = commits.id
LEFT JOIN update_transactions ON update_transactions.commit_id = commits.id
LEFT JOIN repos ON repos.id = commits.repo_id
WHERE images.id IS NULL AND update_transactions.id IS NULL
"""

# Deployments with the legacy repos.commit_id column still link commits that way
_LEGACY_REPO_COMMITS_FILTER = """
    AND commits.id NOT IN (SELECT commit_id FROM repos WHERE commit_id IS NOT NULL)
"""

_ORPHAN_COMMITS_ORDER = """
ORDER BY commits.id ASC
LIMIT ?
"""


def orphan_commits_sql(exclude_legacy_repo_commits: bool = False) -> str:
    """Build the orphan-commit query, optionally excluding legacy repo-linked commits."""
    sql = _ORPHAN_COMMITS_SELECT
    if exclude_legacy_repo_commits:
        sql += _LEGACY_REPO_COMMITS_FILTER
    return sql + _ORPHAN_COMMITS_ORDER


async def _fetch_candidates(
    db: Database, query_name: str, sql: str, limit: int, cls: Type[T]
) -> List[T]:
    try:
        rows = await db.fetch(sql, limit)
    except Exception as e:
        logger.error("candidates_query_failed", query=query_name, error=str(e))
        raise QueryError(
            f"Failed to collect {query_name} candidates: {e}",
            details={"query": query_name, "limit": limit},
        ) from e

    candidates = [_from_row(cls, row) for row in rows]
    logger.debug("candidates_collected", query=query_name, count=len(candidates))
    return candidates


async def get_orphan_device_update_candidates(
    db: Database, limit: int = 100
) -> List[CandidateDevice]:
    """
    Collect soft-deleted devices reachable from an update transaction only
    through a dispatch record, not through the transaction's device set.

    Args:
        db: Relational store
        limit: Page size

    Returns:
        Candidates ordered by device id, then update transaction id

    Raises:
        QueryError: If the query fails
    """
    return await _fetch_candidates(
        db, "orphan_device_updates", ORPHAN_DEVICE_UPDATES_SQL, limit, CandidateDevice
    )


async def get_device_candidates(db: Database, limit: int = 100) -> List[CandidateDevice]:
    """
    Collect soft-deleted devices with zero or one update transaction per row.

    Raises:
        QueryError: If the query fails
    """
    return await _fetch_candidates(
        db, "devices", DEVICE_CANDIDATES_SQL, limit, CandidateDevice
    )


async def get_image_candidates(db: Database, limit: int = 30) -> List[CandidateImage]:
    """
    Collect soft-deleted images, and ERROR images that still own
    successfully built artifacts.

    Raises:
        QueryError: If the query fails
    """
    return await _fetch_candidates(db, "images", IMAGE_CANDIDATES_SQL, limit, CandidateImage)


async def get_orphan_commit_candidates(
    db: Database,
    limit: int = 45,
    exclude_legacy_repo_commits: bool = False,
) -> List[OrphanCommitCandidate]:
    """
    Collect commits referenced by no image and no update transaction.

    Args:
        db: Relational store
        limit: Page size
        exclude_legacy_repo_commits: Skip commits referenced by repos.commit_id

    Raises:
        QueryError: If the query fails
    """
    return await _fetch_candidates(
        db,
        "orphan_commits",
        orphan_commits_sql(exclude_legacy_repo_commits),
        limit,
        OrphanCommitCandidate,
    )
