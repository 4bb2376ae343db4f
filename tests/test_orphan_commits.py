# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Orphan commit and orphan installed-package sweep tests.
"""

import pytest

from conftest import (
    BUCKET,
    FakeS3Client,
    count_rows,
    create_commit,
    create_image,
    create_repo,
    create_update,
    fetch_row,
    insert,
    row_exists,
)
from edgegc.candidates import get_orphan_commit_candidates
from edgegc.exceptions import FeatureDisabledError, JobInterruptedError, StorageError
from edgegc.jobs.orphan_commits import (
    cleanup_all_orphan_commits,
    cleanup_orphan_commit,
    cleanup_orphan_installed_packages,
)

REPO_URL = f"https://{BUCKET}.s3.amazonaws.com/org-1/images/12/repo"


async def _link_package(db, commit_id: int, name: str = "bash") -> int:
    package_id = await insert(db, "installed_packages", name=name, version="1")
    await db.execute(
        "INSERT INTO commit_installed_packages (commit_id, installed_package_id) VALUES (?, ?)",
        commit_id,
        package_id,
    )
    return package_id


# ============================================================================
# Orphan commits
# ============================================================================


@pytest.mark.asyncio
async def test_orphan_commit_repo_reclaimed_and_rows_deleted(
    db, fake_s3: FakeS3Client, storage
):
    fake_s3.objects = {"org-1/images/12/repo/config"}
    repo_id = await create_repo(db, url=REPO_URL, status="SUCCESS")
    commit_id = await create_commit(db, repo_id=repo_id)
    await _link_package(db, commit_id)
    (candidate,) = await get_orphan_commit_candidates(db)

    await cleanup_orphan_commit(db, storage, candidate)

    assert fake_s3.calls_of("list_objects_v2") == ["org-1/images/12/repo"]
    assert fake_s3.objects == set()
    assert not await row_exists(db, "commits", commit_id)
    assert not await row_exists(db, "repos", repo_id)
    assert await count_rows(db, "commit_installed_packages") == 0


@pytest.mark.asyncio
async def test_orphan_commit_without_repo_content_skips_storage(
    db, fake_s3: FakeS3Client, storage
):
    repo_id = await create_repo(db, url="", status="STORAGE_CLEANED")
    commit_id = await create_commit(db, repo_id=repo_id)
    bare_commit = await create_commit(db)

    for candidate in await get_orphan_commit_candidates(db):
        await cleanup_orphan_commit(db, storage, candidate)

    assert fake_s3.calls == []
    assert not await row_exists(db, "commits", commit_id)
    assert not await row_exists(db, "commits", bare_commit)
    assert not await row_exists(db, "repos", repo_id)


@pytest.mark.asyncio
async def test_storage_failure_keeps_orphan_commit(db, fake_s3: FakeS3Client, storage):
    fake_s3.fail_next(100)
    repo_id = await create_repo(db, url=REPO_URL, status="SUCCESS")
    commit_id = await create_commit(db, repo_id=repo_id)
    (candidate,) = await get_orphan_commit_candidates(db)

    with pytest.raises(StorageError):
        await cleanup_orphan_commit(db, storage, candidate)

    assert await row_exists(db, "commits", commit_id)
    assert await row_exists(db, "repos", repo_id)


@pytest.mark.asyncio
async def test_repo_url_without_path_never_empties_bucket(
    db, fake_s3: FakeS3Client, storage
):
    fake_s3.objects = {"org-2/images/7/repo/config", "org-3/upd/x/objects/1"}
    repo_id = await create_repo(db, url=f"https://{BUCKET}.s3.amazonaws.com/", status="SUCCESS")
    commit_id = await create_commit(db, repo_id=repo_id)
    (candidate,) = await get_orphan_commit_candidates(db)

    with pytest.raises(StorageError):
        await cleanup_orphan_commit(db, storage, candidate)

    assert fake_s3.objects == {"org-2/images/7/repo/config", "org-3/upd/x/objects/1"}
    assert fake_s3.calls_of("list_objects_v2") == []
    assert await row_exists(db, "commits", commit_id)
    assert (await fetch_row(db, "repos", repo_id))["status"] == "SUCCESS"


@pytest.mark.asyncio
async def test_cleanup_all_orphan_commits_keeps_referenced_commits(
    db, storage, test_config, all_flags
):
    image_commit = await create_commit(db)
    update_commit = await create_commit(db)
    await create_image(db, commit_id=image_commit)
    await create_update(db, commit_id=update_commit)
    orphans = [await create_commit(db) for _ in range(5)]
    config = test_config.with_updates(orphan_commits_page_size=2)

    result = await cleanup_all_orphan_commits(db, storage, config, all_flags)

    assert result.candidates == 5
    assert result.pages == 3
    assert all([not await row_exists(db, "commits", c) for c in orphans])
    assert await row_exists(db, "commits", image_commit)
    assert await row_exists(db, "commits", update_commit)


@pytest.mark.asyncio
async def test_cleanup_all_orphan_commits_interrupted(
    db, fake_s3: FakeS3Client, storage, test_config, all_flags
):
    fake_s3.fail_next(100)
    repo_id = await create_repo(db, url=REPO_URL, status="SUCCESS")
    await create_commit(db, repo_id=repo_id)

    with pytest.raises(JobInterruptedError):
        await cleanup_all_orphan_commits(db, storage, test_config, all_flags)


@pytest.mark.asyncio
async def test_cleanup_all_orphan_commits_disabled(db, storage, test_config, no_flags):
    commit_id = await create_commit(db)

    with pytest.raises(FeatureDisabledError):
        await cleanup_all_orphan_commits(db, storage, test_config, no_flags)

    assert await row_exists(db, "commits", commit_id)


# ============================================================================
# Orphan installed packages
# ============================================================================


@pytest.mark.asyncio
async def test_orphan_installed_packages_deleted_page_by_page(db, test_config, all_flags):
    commit_id = await create_commit(db)
    await create_image(db, commit_id=commit_id)
    kept = await _link_package(db, commit_id, name="kernel")
    for name in ("vim", "emacs", "nano"):
        await insert(db, "installed_packages", name=name, version="1")
    config = test_config.with_updates(installed_packages_page_size=2)

    result = await cleanup_orphan_installed_packages(db, config, all_flags)

    assert result.candidates == 3
    assert result.pages == 2
    assert await count_rows(db, "installed_packages") == 1
    assert await row_exists(db, "installed_packages", kept)


@pytest.mark.asyncio
async def test_orphan_installed_packages_disabled(db, test_config, no_flags):
    await insert(db, "installed_packages", name="vim", version="1")

    with pytest.raises(FeatureDisabledError):
        await cleanup_orphan_installed_packages(db, test_config, no_flags)

    assert await count_rows(db, "installed_packages") == 1
