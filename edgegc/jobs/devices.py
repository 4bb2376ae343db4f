# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Device and update-transaction reclamation.

A soft-deleted device is removed in two passes: first each of its update
transactions is reclaimed (update repo storage, then the transaction and
its join rows), then a later page finds the device with no update
transaction left and hard-deletes it with its dispatch records and
group memberships.
"""

from functools import partial
from typing import List

import structlog

from edgegc.candidates import (
    CandidateDevice,
    get_device_candidates,
    get_orphan_device_update_candidates,
)
from edgegc.config import STATUS_STORAGE_CLEANED, ReclaimConfig
from edgegc.db.connection import Database, Executor
from edgegc.exceptions import (
    ConflictingStateError,
    DatabaseError,
    FeatureDisabledError,
    MissingReferenceError,
    NotCandidateError,
    StorageError,
)
from edgegc.features import CLEANUP_DEVICES, FeatureFlags
from edgegc.runner import JobResult, run_paged_job
from edgegc.storage import StorageReclaimer, get_path_from_url

logger = structlog.get_logger()


def is_device_candidate(candidate: CandidateDevice) -> None:
    """
    Ensure the device is soft deleted.

    Raises:
        NotCandidateError: If the device has no deleted-at timestamp
    """
    if not candidate.is_soft_deleted:
        raise NotCandidateError(
            "Device is not a cleanup candidate",
            details={"device_id": candidate.device_id},
        )


def is_update_repo(repo_id: int | None, repo_url: str | None) -> bool:
    """
    Tell whether a repo was built for a device update.

    Update repos carry ``/upd/`` or their own repo id as a path segment.
    """
    if repo_id is None or not repo_url:
        return False
    return "/upd/" in repo_url or f"/{repo_id}/" in repo_url


async def delete_commit(tx: Executor, candidate: CandidateDevice) -> bool:
    """
    Delete the commit of a device update, inside the caller's transaction.

    Does nothing when the candidate has no commit, or when the commit is
    owned by an image (image cleanup handles it). The commit repo row is
    deleted too, since a commit without image has no other repo owner.

    Args:
        tx: Open transaction
        candidate: Device candidate

    Returns:
        True if the commit was deleted

    Raises:
        NotCandidateError: If the device is not soft deleted
    """
    is_device_candidate(candidate)

    if candidate.commit_id is None or candidate.image_id is not None:
        return False

    await tx.execute(
        "DELETE FROM updatetransaction_commits WHERE commit_id = ?", candidate.commit_id
    )
    await tx.execute(
        "DELETE FROM commit_installed_packages WHERE commit_id = ?", candidate.commit_id
    )
    await tx.execute("DELETE FROM commits WHERE id = ?", candidate.commit_id)

    if candidate.commit_repo_id is not None:
        await tx.execute("DELETE FROM repos WHERE id = ?", candidate.commit_repo_id)

    return True


async def delete_update_transaction(db: Database, candidate: CandidateDevice) -> None:
    """
    Hard-delete an update transaction, its join rows and its repo row.

    The commit row is kept; a commit left without image or update
    transaction is removed by the orphan-commit sweep.

    Raises:
        NotCandidateError: If the device is not soft deleted
        MissingReferenceError: If the candidate has no update transaction
        DatabaseError: If any row mutation fails (the transaction is rolled back)
    """
    is_device_candidate(candidate)

    if candidate.update_id is None:
        raise MissingReferenceError(
            "Update transaction is not defined",
            details={"device_id": candidate.device_id},
        )

    update_id = candidate.update_id
    logger.debug("deleting_update_transaction", **candidate.log_context())

    try:
        async with db.transaction() as tx:
            await tx.execute(
                "DELETE FROM updatetransaction_dispatchrecords WHERE update_transaction_id = ?",
                update_id,
            )
            await tx.execute(
                "DELETE FROM updatetransaction_devices WHERE update_transaction_id = ?",
                update_id,
            )
            await tx.execute(
                "DELETE FROM updatetransaction_commits WHERE update_transaction_id = ?",
                update_id,
            )
            await tx.execute("DELETE FROM update_transactions WHERE id = ?", update_id)

            if candidate.repo_id is not None:
                await tx.execute("DELETE FROM repos WHERE id = ?", candidate.repo_id)
    except Exception as e:
        logger.error(
            "update_transaction_delete_failed", error=str(e), **candidate.log_context()
        )
        raise DatabaseError(
            f"Failed to delete update transaction {update_id}: {e}",
            details=candidate.log_context(),
        ) from e


async def delete_device(db: Database, candidate: CandidateDevice) -> None:
    """
    Hard-delete a device with its dispatch records and group memberships.

    Raises:
        NotCandidateError: If the device is not soft deleted
        ConflictingStateError: If the device still has an update transaction
        DatabaseError: If any row mutation fails
    """
    is_device_candidate(candidate)

    if candidate.update_id is not None:
        raise ConflictingStateError(
            "Device with update transaction cannot be deleted",
            details=candidate.log_context(),
        )

    logger.debug("deleting_device", device_id=candidate.device_id, org_id=candidate.org_id)

    try:
        async with db.transaction() as tx:
            await tx.execute(
                "DELETE FROM dispatch_records WHERE device_id = ?", candidate.device_id
            )
            await tx.execute(
                "DELETE FROM device_groups_devices WHERE device_id = ?", candidate.device_id
            )
            await tx.execute("DELETE FROM devices WHERE id = ?", candidate.device_id)
    except Exception as e:
        logger.error(
            "device_delete_failed",
            device_id=candidate.device_id,
            org_id=candidate.org_id,
            error=str(e),
        )
        raise DatabaseError(
            f"Failed to delete device {candidate.device_id}: {e}",
            details={"device_id": candidate.device_id, "org_id": candidate.org_id},
        ) from e


async def clean_up_update_transaction(
    db: Database, storage: StorageReclaimer, candidate: CandidateDevice
) -> None:
    """
    Reclaim the update repo storage, then delete the update transaction.

    The repo content is only deleted when the repo was built for this
    update; it is then marked STORAGE_CLEANED with its URL cleared
    before any row is deleted.

    Raises:
        NotCandidateError: If the device is not soft deleted
        MissingReferenceError: If the candidate has no update transaction
        StorageError: If the repo content could not be deleted
        DatabaseError: If a row mutation fails
    """
    is_device_candidate(candidate)

    if candidate.update_id is None:
        raise MissingReferenceError(
            "Update transaction is not defined",
            details={"device_id": candidate.device_id},
        )

    if is_update_repo(candidate.repo_id, candidate.repo_url):
        log = logger.bind(**candidate.log_context())
        try:
            url_path = get_path_from_url(candidate.repo_url)
            log.debug("deleting_update_repo", repo_url_path=url_path)
            await storage.delete_prefix(url_path)
        except StorageError as e:
            log.error("update_repo_delete_failed", error=str(e))
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

    await delete_update_transaction(db, candidate)


async def clean_up_device(
    db: Database, storage: StorageReclaimer, candidate: CandidateDevice
) -> None:
    """
    Reclaim one device candidate.

    With an update transaction, only the transaction is reclaimed this
    round; the device row is deleted by a later page once no update
    transaction is left.
    """
    is_device_candidate(candidate)

    if candidate.update_id is not None:
        await clean_up_update_transaction(db, storage, candidate)
    else:
        await delete_device(db, candidate)


async def cleanup_orphan_devices_updates(
    db: Database,
    storage: StorageReclaimer,
    config: ReclaimConfig,
    flags: FeatureFlags,
) -> JobResult:
    """
    Reclaim update transactions linked to soft-deleted devices through
    dispatch records only.

    Raises:
        QueryError: If candidates cannot be collected
        JobInterruptedError: If any candidate of a page failed
    """
    return await run_paged_job(
        "orphan_devices_updates",
        partial(get_orphan_device_update_candidates, db, config.devices_page_size),
        partial(clean_up_update_transaction, db, storage),
        max_pages=config.devices_max_pages,
        is_enabled=partial(flags.is_enabled, CLEANUP_DEVICES),
    )


async def cleanup_all_devices(
    db: Database,
    storage: StorageReclaimer,
    config: ReclaimConfig,
    flags: FeatureFlags,
) -> List[JobResult]:
    """
    Run the orphan device-update pass, then reclaim every soft-deleted device.

    Returns:
        Results of both passes

    Raises:
        FeatureDisabledError: If the devices cleanup flag is disabled
        QueryError: If candidates cannot be collected
        JobInterruptedError: If any candidate of a page failed
    """
    if not flags.is_enabled(CLEANUP_DEVICES):
        logger.warning("devices_cleanup_disabled", flag=CLEANUP_DEVICES.name)
        raise FeatureDisabledError(
            "Cleanup devices is not available",
            details={"flag": CLEANUP_DEVICES.name},
        )

    orphans = await cleanup_orphan_devices_updates(db, storage, config, flags)

    devices = await run_paged_job(
        "devices",
        partial(get_device_candidates, db, config.devices_page_size),
        partial(clean_up_device, db, storage),
        max_pages=config.devices_max_pages,
        is_enabled=partial(flags.is_enabled, CLEANUP_DEVICES),
    )
    return [orphans, devices]
