# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Image retention tests.
"""

import pytest

from conftest import create_device, create_image, fetch_row, insert
from edgegc.exceptions import FeatureDisabledError
from edgegc.jobs.retention import (
    delete_all_images,
    delete_images,
    delete_orphan_images,
    expired_images_sql,
)


async def _is_soft_deleted(db, image_id: int) -> bool:
    return (await fetch_row(db, "images", image_id))["deleted_at"] is not None


@pytest.mark.asyncio
async def test_images_of_deleted_image_sets_are_soft_deleted(db):
    deleted_set = await insert(db, "image_sets", name="gone", deleted_at="2026-01-01 00:00:00+00:00")
    live_set = await insert(db, "image_sets", name="live")
    orphan = await create_image(db, image_set_id=deleted_set)
    kept = await create_image(db, image_set_id=live_set)

    count = await delete_orphan_images(db)

    assert count == 1
    assert await _is_soft_deleted(db, orphan)
    assert not await _is_soft_deleted(db, kept)


@pytest.mark.asyncio
async def test_expired_unused_images_are_soft_deleted(db):
    expired = await create_image(db, name="edge-image", updated_days_ago=30)
    recent = await create_image(db, name="edge-image", updated_days_ago=1)
    in_use = await create_image(db, name="edge-image", updated_days_ago=30)
    await create_device(db, deleted=False, image_id=in_use)

    count = await delete_images(db, retention_days=7)

    assert count == 1
    assert await _is_soft_deleted(db, expired)
    assert not await _is_soft_deleted(db, recent)
    assert not await _is_soft_deleted(db, in_use)


@pytest.mark.asyncio
async def test_keep_list_prefixes_are_never_deleted(db):
    kept = [
        await create_image(db, name="dl-fleet-image", updated_days_ago=400),
        await create_image(db, name="IQE-TEST-IMAGE-42", updated_days_ago=400),
        await create_image(db, name="PopcornOS", updated_days_ago=400),
    ]
    expired = await create_image(db, name="my-dl-image", updated_days_ago=400)

    count = await delete_images(
        db, retention_days=7, names_to_keep=("DL-", "IQE-TEST-IMAGE-", "PopcornOS")
    )

    assert count == 1
    assert await _is_soft_deleted(db, expired)
    for image_id in kept:
        assert not await _is_soft_deleted(db, image_id)


def test_expired_images_sql_has_one_clause_per_kept_name():
    sql, params = expired_images_sql(("DL-", "PopcornOS"))

    assert sql.count("NOT LIKE ?") == 2
    assert params == ["DL-%", "POPCORNOS%"]


def test_keep_list_wildcards_are_escaped():
    _, params = expired_images_sql(("my_img", "50%-off"))

    assert params == ["MY\\_IMG%", "50\\%-OFF%"]


@pytest.mark.asyncio
async def test_keep_list_matches_underscore_literally(db):
    kept = await create_image(db, name="my_img-1", updated_days_ago=30)
    lookalike = await create_image(db, name="MYXIMG-1", updated_days_ago=30)

    count = await delete_images(db, retention_days=7, names_to_keep=("MY_IMG",))

    assert count == 1
    assert not await _is_soft_deleted(db, kept)
    assert await _is_soft_deleted(db, lookalike)


@pytest.mark.asyncio
async def test_delete_all_images_runs_both_steps(db, test_config, all_flags):
    deleted_set = await insert(db, "image_sets", name="gone", deleted_at="2026-01-01 00:00:00+00:00")
    await create_image(db, image_set_id=deleted_set)
    await create_image(db, name="old", updated_days_ago=30)
    await create_image(db, name="DL-old", updated_days_ago=30)

    result = await delete_all_images(db, test_config, all_flags)

    assert result.orphan_images == 1
    assert result.expired_images == 1


@pytest.mark.asyncio
async def test_delete_all_images_disabled(db, test_config, no_flags):
    image_id = await create_image(db, updated_days_ago=30)

    with pytest.raises(FeatureDisabledError):
        await delete_all_images(db, test_config, no_flags)

    assert not await _is_soft_deleted(db, image_id)
