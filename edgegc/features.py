# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Feature flags gating each cleanup job.

A flag is enabled when the feature-flag service reports it enabled, or
when its environment variable is set (to any value). The flag service
client itself lives outside this package; anything with an
``is_enabled(name) -> bool`` method can be plugged in.
"""

import os
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol


class FlagProvider(Protocol):
    """Protocol for a feature-flag service client."""

    def is_enabled(self, name: str) -> bool:
        ...


@dataclass(frozen=True)
class Flag:
    """A feature flag known by the flag service and by a local env var."""

    name: str
    env_var: str


CLEANUP_DELETE_IMAGES = Flag(
    name="edge-management.cleanup_delete_images", env_var="FEATURE_CLEANUP_DELETE_IMAGES"
)
CLEANUP_IMAGES = Flag(name="edge-management.cleanup_images", env_var="FEATURE_CLEANUP_IMAGES")
CLEANUP_DEVICES = Flag(name="edge-management.cleanup_devices", env_var="FEATURE_CLEANUP_DEVICES")
CLEANUP_ORPHAN_COMMITS = Flag(
    name="edge-management.cleanup_orphan_commits", env_var="FEATURE_CLEANUP_ORPHAN_COMMITS"
)


class StaticFlagProvider:
    """Provider answering from a fixed set of enabled flag names."""

    def __init__(self, enabled: Iterable[str] = ()):
        self._enabled = set(enabled)

    def enable(self, name: str) -> None:
        self._enabled.add(name)

    def disable(self, name: str) -> None:
        self._enabled.discard(name)

    def is_enabled(self, name: str) -> bool:
        return name in self._enabled


class FeatureFlags:
    """Resolves flags against the provider first, then the environment."""

    def __init__(
        self,
        provider: FlagProvider | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self._provider = provider
        self._environ = os.environ if environ is None else environ

    def is_enabled(self, flag: Flag) -> bool:
        if self._provider is not None and flag.name and self._provider.is_enabled(flag.name):
            return True
        return flag.env_var in self._environ
