# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Edge GC Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so that concurrent
page workers can share one instance without coordination.
"""

from dataclasses import dataclass
from typing import List, Tuple
import re


# Status values shared by repos, commits, installers and images
STATUS_SUCCESS = "SUCCESS"
STATUS_ERROR = "ERROR"
STATUS_STORAGE_CLEANED = "STORAGE_CLEANED"

DEFAULT_IMAGE_NAMES_TO_KEEP: Tuple[str, ...] = ("DL-", "IQE-TEST-IMAGE-", "PopcornOS")

SUPPORTED_DATABASE_SCHEMES = ("postgresql://", "postgres://", "sqlite:///")


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens, periods
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_database_url(url: str) -> bool:
    if not url:
        return False
    return url.lower().startswith(SUPPORTED_DATABASE_SCHEMES)


@dataclass(frozen=True)
class ReclaimConfig:
    """
    Immutable configuration for the reclamation pipeline.

    Page sizes bound both the candidate query LIMIT and the number of
    concurrent workers per page.
    """

    # Required: bucket holding repos, tarballs and ISO installers
    bucket: str

    # Required: relational store URL (postgresql://... or sqlite:///path)
    database_url: str

    # AWS region (default: us-east-1)
    region: str = "us-east-1"

    # Custom S3 endpoint (minio, localstack)
    endpoint_url: str | None = None

    # Candidate page sizes
    devices_page_size: int = 100
    images_page_size: int = 30
    orphan_commits_page_size: int = 45
    installed_packages_page_size: int = 1000

    # Safety ceilings against unbounded iteration
    devices_max_pages: int = 3000
    images_max_pages: int = 1000
    orphan_commits_max_pages: int = 1000

    # Images share image sets and commits, one at a time by default
    images_max_concurrency: int = 1

    # Remote deletion retry policy: delay = delete_retry_delay * delay_unit_seconds
    delete_attempts: int = 10
    delete_retry_delay: int = 5
    delay_unit_seconds: float = 1.0

    # Image retention stage
    image_retention_days: int = 7
    image_names_to_keep: Tuple[str, ...] = DEFAULT_IMAGE_NAMES_TO_KEEP

    # Some deployments still carry repos.commit_id; exclude those commits
    exclude_legacy_repo_commits: bool = False

    # Connection pool size (default: largest page size)
    db_max_connections: int | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_bucket_name(self.bucket):
            errors.append(f"Invalid bucket name: {self.bucket}")

        if not _validate_database_url(self.database_url):
            from edgegc.errors import explain_unsupported_database_url

            errors.append(explain_unsupported_database_url(self.database_url))

        for name in (
            "devices_page_size",
            "images_page_size",
            "orphan_commits_page_size",
            "installed_packages_page_size",
            "devices_max_pages",
            "images_max_pages",
            "orphan_commits_max_pages",
            "images_max_concurrency",
            "delete_attempts",
        ):
            value = getattr(self, name)
            if value < 1:
                errors.append(f"{name} must be >= 1, got {value}")

        if self.delete_retry_delay < 0:
            errors.append(f"delete_retry_delay must be >= 0, got {self.delete_retry_delay}")

        if self.delay_unit_seconds < 0:
            errors.append(f"delay_unit_seconds must be >= 0, got {self.delay_unit_seconds}")

        if self.image_retention_days < 0:
            errors.append(
                f"image_retention_days must be >= 0, got {self.image_retention_days}"
            )

        if any(not name for name in self.image_names_to_keep):
            errors.append("image_names_to_keep must not contain empty names")

        if self.db_max_connections is not None and self.db_max_connections < 1:
            errors.append(f"db_max_connections must be >= 1, got {self.db_max_connections}")

        if errors:
            from edgegc.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def delete_retry_delay_seconds(self) -> float:
        return self.delete_retry_delay * self.delay_unit_seconds

    @property
    def max_connections(self) -> int:
        if self.db_max_connections is not None:
            return self.db_max_connections
        return max(
            self.devices_page_size,
            self.images_max_concurrency,
            self.orphan_commits_page_size,
        )

    def with_updates(self, **kwargs) -> "ReclaimConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return ReclaimConfig(**current)
