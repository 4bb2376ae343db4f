# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Edge GC - Storage and row reclamation for an edge-device fleet backend.

Discovers soft-deleted devices and images, failed image builds and
orphan commits, frees their remote build artifacts (OSTree repos,
tarballs, ISO installers) and hard-deletes their rows without ever
deleting a row a live entity still references. Package name: edgegc.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from edgegc.builder import create_config

# Core functions
from edgegc.core import (
    initialize_reclaim_state,
    run_reclaim_pipeline,
    shutdown_reclaim_state,
)

# Environment-based configuration
from edgegc.env import create_config_from_env

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_reclaim_state",
    "run_reclaim_pipeline",
    "shutdown_reclaim_state",
]
