# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Edge GC Exceptions - Custom exceptions for the edgegc package.
"""


class ReclaimError(Exception):
    """Base exception for all edgegc errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ReclaimError):
    """Raised when configuration is invalid."""

    pass


class NotCandidateError(ReclaimError):
    """Raised when an entity is not eligible for reclamation (not soft deleted)."""

    pass


class MissingReferenceError(ReclaimError):
    """Raised when a required foreign key is absent from a candidate."""

    pass


class ConflictingStateError(ReclaimError):
    """Raised when a candidate is still linked to a live entity."""

    pass


class StorageError(ReclaimError):
    """Raised when remote object-storage deletion exhausted all attempts."""

    pass


class QueryError(ReclaimError):
    """Raised when candidate discovery fails."""

    pass


class DatabaseError(ReclaimError):
    """Raised when a row mutation fails and its transaction is rolled back."""

    pass


class JobInterruptedError(ReclaimError):
    """Raised when at least one candidate of a page failed."""

    pass


class FeatureDisabledError(ReclaimError):
    """Raised when the feature flag of a job is disabled. Never fatal."""

    pass
