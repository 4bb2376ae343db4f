# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Image storage reclamation and hard deletion.

Each of the three artifacts of an image (build tarball, OSTree repo and
ISO installer) is reclaimed when its own status is SUCCESS, and its row
is marked STORAGE_CLEANED with the URL cleared. Soft-deleted images are
then hard-deleted together with every row they own exclusively.
"""

from functools import partial

import structlog

from edgegc.candidates import CandidateImage, get_image_candidates
from edgegc.config import (
    STATUS_ERROR,
    STATUS_STORAGE_CLEANED,
    STATUS_SUCCESS,
    ReclaimConfig,
)
from edgegc.db.connection import Database
from edgegc.exceptions import (
    DatabaseError,
    FeatureDisabledError,
    NotCandidateError,
    StorageError,
)
from edgegc.features import CLEANUP_IMAGES, FeatureFlags
from edgegc.runner import JobResult, run_paged_job
from edgegc.storage import StorageReclaimer, get_path_from_url

logger = structlog.get_logger()


async def _mark_storage_cleaned(
    db: Database, table: str, url_column: str, row_id: int | None, candidate: CandidateImage
) -> None:
    try:
        await db.execute(
            f"UPDATE {table} SET status = ?, {url_column} = ? WHERE id = ?",
            STATUS_STORAGE_CLEANED,
            "",
            row_id,
        )
    except Exception as e:
        logger.error(
            "storage_cleaned_update_failed",
            table=table,
            row_id=row_id,
            error=str(e),
            **candidate.log_context(),
        )
        raise DatabaseError(
            f"Failed to mark {table} {row_id} as cleaned: {e}",
            details={"table": table, "row_id": row_id, **candidate.log_context()},
        ) from e


async def _reclaim(
    delete,
    kind: str,
    url: str,
    candidate: CandidateImage,
) -> None:
    log = logger.bind(kind=kind, url=url, **candidate.log_context())
    try:
        url_path = get_path_from_url(url)
        log.debug("deleting_image_artifact", url_path=url_path)
        await delete(url_path)
    except StorageError as e:
        log.error("image_artifact_delete_failed", error=str(e))
        raise


async def clean_up_image_tar_file(
    db: Database, storage: StorageReclaimer, candidate: CandidateImage
) -> None:
    """Reclaim the commit build tarball when the commit build succeeded."""
    if candidate.commit_status != STATUS_SUCCESS:
        return
    if candidate.commit_tar_url:
        await _reclaim(storage.delete_object, "tar_file", candidate.commit_tar_url, candidate)
    await _mark_storage_cleaned(
        db, "commits", "image_build_tar_url", candidate.commit_id, candidate
    )


async def clean_up_image_repo(
    db: Database, storage: StorageReclaimer, candidate: CandidateImage
) -> None:
    """Reclaim the commit OSTree repo when the repo build succeeded."""
    if candidate.repo_id is None or candidate.repo_status != STATUS_SUCCESS:
        return
    if candidate.repo_url:
        await _reclaim(storage.delete_prefix, "repo", candidate.repo_url, candidate)
    await _mark_storage_cleaned(db, "repos", "url", candidate.repo_id, candidate)


async def clean_up_image_iso_file(
    db: Database, storage: StorageReclaimer, candidate: CandidateImage
) -> None:
    """Reclaim the ISO installer when the installer build succeeded."""
    if candidate.installer_status != STATUS_SUCCESS:
        return
    if candidate.installer_iso_url:
        await _reclaim(
            storage.delete_object, "iso_file", candidate.installer_iso_url, candidate
        )
    await _mark_storage_cleaned(
        db, "installers", "image_build_iso_url", candidate.installer_id, candidate
    )


async def clean_up_image_storage(
    db: Database, storage: StorageReclaimer, candidate: CandidateImage
) -> None:
    """Reclaim tarball, repo and ISO in sequence, stopping on the first failure."""
    logger.info("image_storage_cleaning_started", image_id=candidate.image_id)
    await clean_up_image_tar_file(db, storage, candidate)
    await clean_up_image_repo(db, storage, candidate)
    await clean_up_image_iso_file(db, storage, candidate)
    logger.info("image_storage_cleaning_finished", image_id=candidate.image_id)


async def delete_image(db: Database, candidate: CandidateImage) -> None:
    """
    Hard-delete a soft-deleted image and the rows it owns.

    The commit and its repo are deleted only when no update transaction
    references the commit; the image set only when it has no image left.

    Args:
        db: Relational store
        candidate: Image candidate

    Raises:
        NotCandidateError: If the image is not soft deleted
        DatabaseError: If any statement fails (the transaction is rolled back)
    """
    if not candidate.is_soft_deleted:
        raise NotCandidateError(
            "Image is not a cleanup candidate",
            details={"image_id": candidate.image_id},
        )

    image_id = candidate.image_id
    try:
        async with db.transaction() as tx:
            await tx.execute("DELETE FROM images_packages WHERE image_id = ?", image_id)
            await tx.execute("DELETE FROM images_repos WHERE image_id = ?", image_id)
            await tx.execute("DELETE FROM images_custom_packages WHERE image_id = ?", image_id)
            await tx.execute(
                "DELETE FROM commit_installed_packages WHERE commit_id = ?", candidate.commit_id
            )
            await tx.execute("DELETE FROM images WHERE id = ?", image_id)

            updates_count = await tx.fetchval(
                "SELECT COUNT(*) FROM update_transactions WHERE commit_id = ?",
                candidate.commit_id,
            )
            if updates_count == 0:
                await tx.execute("DELETE FROM commits WHERE id = ?", candidate.commit_id)
                if candidate.repo_id is not None:
                    await tx.execute("DELETE FROM repos WHERE id = ?", candidate.repo_id)

            await tx.execute("DELETE FROM installers WHERE id = ?", candidate.installer_id)

            if candidate.image_set_id is not None:
                images_count = await tx.fetchval(
                    "SELECT COUNT(*) FROM images WHERE image_set_id = ?",
                    candidate.image_set_id,
                )
                if images_count == 0:
                    await tx.execute(
                        "DELETE FROM image_sets WHERE id = ?", candidate.image_set_id
                    )
    except Exception as e:
        logger.error("image_delete_failed", error=str(e), **candidate.log_context())
        raise DatabaseError(
            f"Failed to delete image {image_id}: {e}",
            details=candidate.log_context(),
        ) from e

    logger.info("image_deleted", **candidate.log_context())


async def clean_up_image(
    db: Database, storage: StorageReclaimer, candidate: CandidateImage
) -> None:
    """
    Reclaim one image candidate.

    ERROR images only get their storage reclaimed; soft-deleted images
    are hard-deleted afterwards.

    Raises:
        NotCandidateError: If the image is neither soft deleted nor in ERROR
    """
    if not (candidate.is_soft_deleted or candidate.image_status == STATUS_ERROR):
        raise NotCandidateError(
            "Image is not a cleanup candidate",
            details={"image_id": candidate.image_id, "image_status": candidate.image_status},
        )

    await clean_up_image_storage(db, storage, candidate)

    if candidate.is_soft_deleted:
        await delete_image(db, candidate)


async def cleanup_all_images(
    db: Database,
    storage: StorageReclaimer,
    config: ReclaimConfig,
    flags: FeatureFlags,
) -> JobResult:
    """
    Reclaim every image candidate, page by page.

    Raises:
        FeatureDisabledError: If the images cleanup flag is disabled
        QueryError: If candidates cannot be collected
        JobInterruptedError: If any candidate failed
    """
    if not flags.is_enabled(CLEANUP_IMAGES):
        logger.warning("images_cleanup_disabled", flag=CLEANUP_IMAGES.name)
        raise FeatureDisabledError(
            "Images cleanup is not available",
            details={"flag": CLEANUP_IMAGES.name},
        )

    return await run_paged_job(
        "images",
        partial(get_image_candidates, db, config.images_page_size),
        partial(clean_up_image, db, storage),
        max_pages=config.images_max_pages,
        is_enabled=partial(flags.is_enabled, CLEANUP_IMAGES),
        max_concurrency=config.images_max_concurrency,
    )
