# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for edgegc.

These helpers centralize wording for common configuration errors so that
the config, env and CLI modules present consistent, actionable messages.
"""


def explain_missing_bucket_env() -> str:
    """
    Explain that the bucket environment variable is missing.
    """

    return (
        "Object storage bucket is not configured. "
        "Set the EDGEGC_BUCKET (or S3_BUCKET) environment variable "
        "or pass bucket=... to create_config()."
    )


def explain_missing_database_url_env() -> str:
    """
    Explain that DATABASE_URL is missing.
    """

    return (
        "Relational store is not configured. "
        "Set DATABASE_URL to a postgresql:// or sqlite:/// URL "
        "or pass database_url=... to create_config()."
    )


def explain_unsupported_database_url(url: str) -> str:
    """
    Explain that the database URL scheme is not supported.
    """

    scheme = url.split(":", 1)[0] if url else ""
    return (
        f"Unsupported database URL scheme: {scheme!r}. "
        "Expected 'postgresql://', 'postgres://' or 'sqlite:///'."
    )


def explain_invalid_positive_int_env(name: str, value: str | None) -> str:
    """
    Explain that an integer environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a positive integer."


def explain_invalid_retention_days_env(value: str | None) -> str:
    """
    Explain that EDGEGC_IMAGE_RETENTION_DAYS is invalid.
    """

    return (
        f"Invalid EDGEGC_IMAGE_RETENTION_DAYS value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: true, false, 1, 0, yes, no."
    )
