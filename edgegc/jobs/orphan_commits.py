# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Orphan commit and orphan installed-package sweeps.

Commits left behind by ordering gaps between the image and device jobs
are reclaimed here, followed by installed packages that no commit
references any more.
"""

from functools import partial

import structlog

from edgegc.candidates import OrphanCommitCandidate, get_orphan_commit_candidates
from edgegc.config import STATUS_STORAGE_CLEANED, STATUS_SUCCESS, ReclaimConfig
from edgegc.db.connection import Database
from edgegc.exceptions import DatabaseError, FeatureDisabledError, StorageError
from edgegc.features import CLEANUP_ORPHAN_COMMITS, FeatureFlags
from edgegc.runner import JobResult, run_paged_job
from edgegc.storage import StorageReclaimer, get_path_from_url

logger = structlog.get_logger()

ORPHAN_INSTALLED_PACKAGES_SQL = """
SELECT installed_packages.id AS id
FROM installed_packages
LEFT JOIN commit_installed_packages
    ON commit_installed_packages.installed_package_id = installed_packages.id
WHERE commit_installed_packages.commit_id IS NULL
ORDER BY installed_packages.id ASC
LIMIT ?
"""


def _feature_disabled() -> FeatureDisabledError:
    logger.warning("orphan_commits_cleanup_disabled", flag=CLEANUP_ORPHAN_COMMITS.name)
    return FeatureDisabledError(
        "Cleanup orphan commits is not available",
        details={"flag": CLEANUP_ORPHAN_COMMITS.name},
    )


async def delete_orphan_commit(db: Database, candidate: OrphanCommitCandidate) -> None:
    """
    Delete an orphan commit with its join rows and its repo row.

    Raises:
        DatabaseError: If any statement fails (the transaction is rolled back)
    """
    try:
        async with db.transaction() as tx:
            await tx.execute(
                "DELETE FROM updatetransaction_commits WHERE commit_id = ?", candidate.commit_id
            )
            await tx.execute(
                "DELETE FROM commit_installed_packages WHERE commit_id = ?", candidate.commit_id
            )
            await tx.execute("DELETE FROM commits WHERE id = ?", candidate.commit_id)
            if candidate.repo_id is not None:
                await tx.execute("DELETE FROM repos WHERE id = ?", candidate.repo_id)
    except Exception as e:
        logger.error("orphan_commit_delete_failed", error=str(e), **candidate.log_context())
        raise DatabaseError(
            f"Failed to delete commit {candidate.commit_id}: {e}",
            details=candidate.log_context(),
        ) from e

    logger.debug("orphan_commit_deleted", commit_id=candidate.commit_id)


async def cleanup_orphan_commit(
    db: Database, storage: StorageReclaimer, candidate: OrphanCommitCandidate
) -> None:
    """
    Reclaim the repo content of an orphan commit, then delete the commit.

    Raises:
        StorageError: If the repo content could not be deleted
        DatabaseError: If a row mutation fails
    """
    log = logger.bind(**candidate.log_context())
    log.info("orphan_commit_cleaning")

    if (
        candidate.repo_id is not None
        and candidate.repo_status == STATUS_SUCCESS
        and candidate.repo_url
    ):
        try:
            url_path = get_path_from_url(candidate.repo_url)
            log.debug("deleting_commit_repo", repo_url_path=url_path)
            await storage.delete_prefix(url_path)
        except StorageError as e:
            log.error("commit_repo_delete_failed", error=str(e))
            raise

        try:
            await db.execute(
                "UPDATE repos SET status = ?, url = ? WHERE id = ?",
                STATUS_STORAGE_CLEANED,
                "",
                candidate.repo_id,
            )
        except Exception as e:
            log.error("repo_status_update_failed", error=str(e))
            raise DatabaseError(
                f"Failed to mark repo {candidate.repo_id} as cleaned: {e}",
                details=candidate.log_context(),
            ) from e

    await delete_orphan_commit(db, candidate)
    log.info("orphan_commit_cleaned")


async def cleanup_all_orphan_commits(
    db: Database,
    storage: StorageReclaimer,
    config: ReclaimConfig,
    flags: FeatureFlags,
) -> JobResult:
    """
    Reclaim every commit no image or update transaction references.

    Raises:
        FeatureDisabledError: If the orphan commits flag is disabled
        QueryError: If candidates cannot be collected
        JobInterruptedError: If any candidate of a page failed
    """
    if not flags.is_enabled(CLEANUP_ORPHAN_COMMITS):
        raise _feature_disabled()

    return await run_paged_job(
        "orphan_commits",
        partial(
            get_orphan_commit_candidates,
            db,
            config.orphan_commits_page_size,
            config.exclude_legacy_repo_commits,
        ),
        partial(cleanup_orphan_commit, db, storage),
        max_pages=config.orphan_commits_max_pages,
        is_enabled=partial(flags.is_enabled, CLEANUP_ORPHAN_COMMITS),
    )


async def cleanup_orphan_installed_packages(
    db: Database,
    config: ReclaimConfig,
    flags: FeatureFlags,
) -> JobResult:
    """
    Delete installed packages no commit references, one transaction per page.

    Raises:
        FeatureDisabledError: If the orphan commits flag is disabled
        DatabaseError: If a page could not be deleted
    """
    if not flags.is_enabled(CLEANUP_ORPHAN_COMMITS):
        raise _feature_disabled()

    result = JobResult(job="orphan_installed_packages")
    page_size = config.installed_packages_page_size

    while result.pages < config.orphan_commits_max_pages:
        if not flags.is_enabled(CLEANUP_ORPHAN_COMMITS):
            result.stopped_by_flag = True
            break

        try:
            async with db.transaction() as tx:
                rows = await tx.fetch(ORPHAN_INSTALLED_PACKAGES_SQL, page_size)
                ids = [row["id"] for row in rows]
                if ids:
                    placeholders = ", ".join("?" for _ in ids)
                    await tx.execute(
                        f"DELETE FROM installed_packages WHERE id IN ({placeholders})", *ids
                    )
        except Exception as e:
            logger.error(
                "orphan_installed_packages_delete_failed", page=result.pages, error=str(e)
            )
            raise DatabaseError(
                f"Failed to delete orphan installed packages: {e}",
                details={"page": result.pages, "deleted": result.candidates},
            ) from e

        if not ids:
            break

        result.pages += 1
        result.candidates += len(ids)
    else:
        result.reached_max_pages = True

    logger.info(
        "orphan_installed_packages_finished",
        pages=result.pages,
        packages_count=result.candidates,
    )
    return result
