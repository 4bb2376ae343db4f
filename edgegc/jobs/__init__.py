# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Cleanup jobs, in pipeline order.
"""

from edgegc.jobs.retention import delete_all_images
from edgegc.jobs.images import cleanup_all_images
from edgegc.jobs.devices import cleanup_all_devices
from edgegc.jobs.orphan_commits import (
    cleanup_all_orphan_commits,
    cleanup_orphan_installed_packages,
)

__all__ = [
    "delete_all_images",
    "cleanup_all_images",
    "cleanup_all_devices",
    "cleanup_all_orphan_commits",
    "cleanup_orphan_installed_packages",
]
