# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Edge GC Builder - Functional builder pattern for configuration.

This module provides pure functions for building ReclaimConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from typing import Any, Callable, Dict, Iterable

from edgegc.config import DEFAULT_IMAGE_NAMES_TO_KEEP, ReclaimConfig


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary holding every default.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "bucket": "",
        "database_url": "",
        "region": "us-east-1",
        "endpoint_url": None,
        "devices_page_size": 100,
        "images_page_size": 30,
        "orphan_commits_page_size": 45,
        "installed_packages_page_size": 1000,
        "devices_max_pages": 3000,
        "images_max_pages": 1000,
        "orphan_commits_max_pages": 1000,
        "images_max_concurrency": 1,
        "delete_attempts": 10,
        "delete_retry_delay": 5,
        "delay_unit_seconds": 1.0,
        "image_retention_days": 7,
        "image_names_to_keep": DEFAULT_IMAGE_NAMES_TO_KEEP,
        "exclude_legacy_repo_commits": False,
        "db_max_connections": None,
        "log_level": "INFO",
        "log_json": None,
    }


def with_bucket(config: ConfigDict, bucket_name: str, region: str | None = None) -> ConfigDict:
    """
    Set the bucket holding the build artifacts, and optionally its region.
    """
    updated = {**config, "bucket": bucket_name}
    if region:
        updated["region"] = region
    return updated


def with_endpoint(config: ConfigDict, endpoint_url: str) -> ConfigDict:
    """Point the S3 client at a custom endpoint (minio, localstack)."""
    return {**config, "endpoint_url": endpoint_url}


def with_database(config: ConfigDict, database_url: str) -> ConfigDict:
    """Set the relational store URL."""
    return {**config, "database_url": database_url}


def with_page_sizes(
    config: ConfigDict,
    *,
    devices: int | None = None,
    images: int | None = None,
    orphan_commits: int | None = None,
) -> ConfigDict:
    """
    Override candidate page sizes.

    The page size is also the number of concurrent workers for a page,
    so raising it raises the load on the database and on S3.
    """
    updated = dict(config)
    for key, value in (
        ("devices_page_size", devices),
        ("images_page_size", images),
        ("orphan_commits_page_size", orphan_commits),
    ):
        if value is not None:
            if value < 1:
                raise ValueError(f"{key} must be >= 1, got {value}")
            updated[key] = value
    return updated


def with_delete_retry(
    config: ConfigDict,
    attempts: int,
    delay: int,
    delay_unit_seconds: float | None = None,
) -> ConfigDict:
    """
    Set the remote deletion retry policy.

    Args:
        config: Current configuration dictionary
        attempts: Total number of delete attempts
        delay: Delay between attempts, in delay units
        delay_unit_seconds: Length of one delay unit (default one second)

    Returns:
        New configuration dictionary with the retry policy set
    """
    if attempts < 1:
        raise ValueError(f"delete attempts must be >= 1, got {attempts}")
    if delay < 0:
        raise ValueError(f"delete retry delay must be >= 0, got {delay}")
    updated = {**config, "delete_attempts": attempts, "delete_retry_delay": delay}
    if delay_unit_seconds is not None:
        updated["delay_unit_seconds"] = delay_unit_seconds
    return updated


def retain_images_for(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the image retention window in days.

    Unused images whose last update is younger than this are never soft deleted.
    """
    if days < 0:
        raise ValueError(f"retention days must be >= 0, got {days}")
    return {**config, "image_retention_days": days}


def keep_image_names(
    config: ConfigDict, prefixes: Iterable[str], replace: bool = False
) -> ConfigDict:
    """
    Add image name prefixes that the retention stage must never select.

    Prefixes are appended to the current keep-list; with replace=True
    they become the whole keep-list. Matching is a case-insensitive
    prefix match.
    """
    current = [] if replace else list(config["image_names_to_keep"])
    for prefix in prefixes:
        if prefix not in current:
            current.append(prefix)
    return {**config, "image_names_to_keep": tuple(current)}


def exclude_legacy_repo_commits(config: ConfigDict) -> ConfigDict:
    """
    Exclude commits still referenced by the legacy repos.commit_id column.

    Only enable this on deployments whose repos table still has that column.
    """
    return {**config, "exclude_legacy_repo_commits": True}


def build_config(config_dict: ConfigDict) -> ReclaimConfig:
    """
    Validate and build an immutable ReclaimConfig from a configuration dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    from edgegc.exceptions import ConfigurationError

    if not config_dict.get("bucket"):
        raise ConfigurationError("bucket is required")
    if not config_dict.get("database_url"):
        raise ConfigurationError("database_url is required")

    return ReclaimConfig(**config_dict)


def build_from_steps(*steps: BuilderFunc) -> ReclaimConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: with_bucket(c, "edge-artifacts"),
            lambda c: with_database(c, "postgresql://edge@db/edge"),
            lambda c: retain_images_for(c, 14),
        )
    """
    config = create_empty_config()
    for step in steps:
        config = step(config)
    return build_config(config)


def create_config(
    bucket: str,
    database_url: str,
    *,
    region: str = "us-east-1",
    endpoint_url: str | None = None,
    delete_attempts: int | None = None,
    delete_retry_delay: int | None = None,
    image_retention_days: int | None = None,
    image_names_to_keep: Iterable[str] | None = None,
    keep_default_image_names: bool = True,
    exclude_legacy_commits: bool = False,
    **kwargs: Any,
) -> ReclaimConfig:
    """
    Create edgegc configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        bucket: Bucket holding the build artifacts (required)
        database_url: Relational store URL (required)
        region: AWS region (default: "us-east-1")
        endpoint_url: Custom S3 endpoint (optional)
        delete_attempts: Remote delete attempts (default: 10)
        delete_retry_delay: Delay units between attempts (default: 5)
        image_retention_days: Image retention window (default: 7)
        image_names_to_keep: Image name prefixes to keep, added to the defaults
        keep_default_image_names: False to use image_names_to_keep alone
        exclude_legacy_commits: Enable the repos.commit_id exclusion
        **kwargs: Any other ReclaimConfig field

    Returns:
        Validated, immutable ReclaimConfig instance

    Example:
        config = create_config(
            bucket="edge-artifacts",
            database_url="postgresql://edge:secret@db:5432/edge",
            image_retention_days=14,
            image_names_to_keep=["GOLDEN-"],
        )
    """
    config_dict = create_empty_config()
    config_dict = with_bucket(config_dict, bucket, region)
    config_dict = with_database(config_dict, database_url)

    if endpoint_url:
        config_dict = with_endpoint(config_dict, endpoint_url)

    if delete_attempts is not None or delete_retry_delay is not None:
        config_dict = with_delete_retry(
            config_dict,
            delete_attempts if delete_attempts is not None else config_dict["delete_attempts"],
            delete_retry_delay
            if delete_retry_delay is not None
            else config_dict["delete_retry_delay"],
        )

    if image_retention_days is not None:
        config_dict = retain_images_for(config_dict, image_retention_days)

    if image_names_to_keep is not None:
        config_dict = keep_image_names(
            config_dict, image_names_to_keep, replace=not keep_default_image_names
        )

    if exclude_legacy_commits:
        config_dict = exclude_legacy_repo_commits(config_dict)

    unknown = sorted(set(kwargs) - set(config_dict))
    if unknown:
        from edgegc.exceptions import ConfigurationError

        raise ConfigurationError(
            f"Unknown configuration option: {', '.join(unknown)}",
            details={"unknown": unknown},
        )
    config_dict.update(kwargs)

    return build_config(config_dict)
