# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

The cleanup job runs as a scheduled container, so its configuration
normally comes from the environment. create_config_from_env() reads a
small set of well-known variables and passes them through to create_config().
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping

from edgegc.builder import create_config
from edgegc.config import ReclaimConfig
from edgegc.errors import (
    explain_invalid_bool_env,
    explain_invalid_positive_int_env,
    explain_invalid_retention_days_env,
    explain_missing_bucket_env,
    explain_missing_database_url_env,
)
from edgegc.exceptions import ConfigurationError

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _parse_positive_int(name: str, value: str | None) -> int | None:
    if not value:
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_positive_int_env(name, value)) from exc
    if parsed < 1:
        raise ConfigurationError(explain_invalid_positive_int_env(name, value))
    return parsed


def _parse_retention_days(value: str | None) -> int | None:
    if not value:
        return None
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_bool(name: str, value: str | None) -> bool | None:
    if value is None or value == "":
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def _parse_names(value: str | None) -> List[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def create_config_from_env(environ: Mapping[str, str] | None = None) -> ReclaimConfig:
    """
    Create a ReclaimConfig from environment variables.

    Required:
        - EDGEGC_BUCKET (or S3_BUCKET): bucket holding the build artifacts
        - DATABASE_URL: postgresql:// or sqlite:/// URL

    Optional environment variables:
        - AWS_REGION: AWS region (default: us-east-1)
        - EDGEGC_S3_ENDPOINT: custom S3 endpoint URL
        - EDGEGC_DELETE_ATTEMPTS: remote delete attempts (default: 10)
        - EDGEGC_DELETE_RETRY_DELAY: seconds between attempts (default: 5)
        - EDGEGC_IMAGE_RETENTION_DAYS: non-negative integer (default: 7)
        - EDGEGC_IMAGE_NAMES_TO_KEEP: comma-separated extra prefixes, e.g. "GOLDEN-,QA-"
        - EDGEGC_EXCLUDE_LEGACY_REPO_COMMITS: true/false (default: false)
        - EDGEGC_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
        - EDGEGC_LOG_JSON: true/false (default: auto, JSON when not a TTY)
    """
    env = os.environ if environ is None else environ

    bucket = env.get("EDGEGC_BUCKET") or env.get("S3_BUCKET")
    if not bucket:
        raise ConfigurationError(explain_missing_bucket_env())

    database_url = env.get("DATABASE_URL")
    if not database_url:
        raise ConfigurationError(explain_missing_database_url_env())

    options: Dict[str, Any] = {}

    log_level = env.get("EDGEGC_LOG_LEVEL")
    if log_level:
        options["log_level"] = log_level.upper()

    log_json = _parse_bool("EDGEGC_LOG_JSON", env.get("EDGEGC_LOG_JSON"))
    if log_json is not None:
        options["log_json"] = log_json

    return create_config(
        bucket,
        database_url,
        region=env.get("AWS_REGION", "us-east-1"),
        endpoint_url=env.get("EDGEGC_S3_ENDPOINT") or None,
        delete_attempts=_parse_positive_int(
            "EDGEGC_DELETE_ATTEMPTS", env.get("EDGEGC_DELETE_ATTEMPTS")
        ),
        delete_retry_delay=_parse_positive_int(
            "EDGEGC_DELETE_RETRY_DELAY", env.get("EDGEGC_DELETE_RETRY_DELAY")
        ),
        image_retention_days=_parse_retention_days(env.get("EDGEGC_IMAGE_RETENTION_DAYS")),
        image_names_to_keep=_parse_names(env.get("EDGEGC_IMAGE_NAMES_TO_KEEP")),
        exclude_legacy_commits=bool(
            _parse_bool(
                "EDGEGC_EXCLUDE_LEGACY_REPO_COMMITS",
                env.get("EDGEGC_EXCLUDE_LEGACY_REPO_COMMITS"),
            )
        ),
        **options,
    )
