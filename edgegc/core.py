# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Edge GC Core - Pipeline orchestrator.

Runs the cleanup stages in a fixed order:

1. image retention (soft-delete expired and orphan images)
2. image reclamation (storage, then rows of soft-deleted images)
3. device reclamation (orphan device updates, then devices)
4. orphan commit sweep
5. orphan installed-package sweep

A stage whose feature flag is disabled is skipped and the next one
still runs. Any other error stops the pipeline.
"""

from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Sequence, TypedDict

import structlog

from edgegc.config import ReclaimConfig
from edgegc.db.connection import Database
from edgegc.exceptions import ConfigurationError, FeatureDisabledError
from edgegc.features import FeatureFlags
from edgegc.storage import StorageReclaimer

logger = structlog.get_logger()

STAGE_DELETE_IMAGES = "delete_images"
STAGE_IMAGES = "images"
STAGE_DEVICES = "devices"
STAGE_ORPHAN_COMMITS = "orphan_commits"
STAGE_ORPHAN_INSTALLED_PACKAGES = "orphan_installed_packages"

STAGES = (
    STAGE_DELETE_IMAGES,
    STAGE_IMAGES,
    STAGE_DEVICES,
    STAGE_ORPHAN_COMMITS,
    STAGE_ORPHAN_INSTALLED_PACKAGES,
)


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""

    stage: str
    status: str  # completed, disabled, failed
    result: Any = None
    error: str | None = None


@dataclass
class PipelineResult:
    """Result of a pipeline run."""

    run_id: str  # ULID
    stages: List[StageResult]
    duration_seconds: float
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def stage(self, name: str) -> StageResult | None:
        for stage in self.stages:
            if stage.stage == name:
                return stage
        return None


class ReclaimState(TypedDict):
    """Runtime state for pipeline runs."""

    db: Database
    s3_session: Any  # aiobotocore session
    storage: StorageReclaimer | None  # injected reclaimer, else one client per run
    flags: FeatureFlags
    owns_db: bool
    last_run_at: datetime | None
    total_runs: int
    last_error: str | None


async def initialize_reclaim_state(
    config: ReclaimConfig,
    flags: FeatureFlags | None = None,
    storage: StorageReclaimer | None = None,
    db: Database | None = None,
) -> ReclaimState:
    """
    Initialize runtime state for pipeline runs.

    Opens the relational store unless one is given, and creates the
    aiobotocore session used for per-run S3 clients.

    Args:
        config: Edge GC configuration
        flags: Feature flags (default: environment variables only)
        storage: Pre-built reclaimer, bypassing the S3 client
        db: Open relational store

    Returns:
        Initialized ReclaimState dictionary
    """
    from aiobotocore.session import get_session

    from edgegc.db.connection import connect_database

    owns_db = db is None
    if db is None:
        db = await connect_database(config.database_url, config.max_connections)

    return ReclaimState(
        db=db,
        s3_session=get_session(),
        storage=storage,
        flags=flags or FeatureFlags(),
        owns_db=owns_db,
        last_run_at=None,
        total_runs=0,
        last_error=None,
    )


def _stage_runners(
    config: ReclaimConfig, state: ReclaimState, storage: StorageReclaimer
) -> Dict[str, Callable[[], Awaitable[Any]]]:
    from edgegc.jobs.devices import cleanup_all_devices
    from edgegc.jobs.images import cleanup_all_images
    from edgegc.jobs.orphan_commits import (
        cleanup_all_orphan_commits,
        cleanup_orphan_installed_packages,
    )
    from edgegc.jobs.retention import delete_all_images

    db, flags = state["db"], state["flags"]
    return {
        STAGE_DELETE_IMAGES: lambda: delete_all_images(db, config, flags),
        STAGE_IMAGES: lambda: cleanup_all_images(db, storage, config, flags),
        STAGE_DEVICES: lambda: cleanup_all_devices(db, storage, config, flags),
        STAGE_ORPHAN_COMMITS: lambda: cleanup_all_orphan_commits(db, storage, config, flags),
        STAGE_ORPHAN_INSTALLED_PACKAGES: lambda: cleanup_orphan_installed_packages(
            db, config, flags
        ),
    }


async def run_reclaim_pipeline(
    config: ReclaimConfig,
    state: ReclaimState,
    stages: Sequence[str] | None = None,
) -> PipelineResult:
    """
    Run the cleanup pipeline.

    Args:
        config: Edge GC configuration
        state: Runtime state
        stages: Subset of STAGES to run (default: all, always in pipeline order)

    Returns:
        PipelineResult with one entry per attempted stage

    Raises:
        ConfigurationError: If an unknown stage is requested
        ReclaimError: The error of the first failed stage
    """
    from ulid import ULID

    selected = list(STAGES) if stages is None else list(stages)
    unknown = [s for s in selected if s not in STAGES]
    if unknown:
        raise ConfigurationError(
            f"Unknown pipeline stage: {', '.join(unknown)}",
            details={"known": list(STAGES)},
        )

    run_id = str(ULID())
    start_time = datetime.now(UTC)
    results: List[StageResult] = []

    structlog.contextvars.bind_contextvars(run_id=run_id)
    logger.info("pipeline_started", stages=selected)

    try:
        async with AsyncExitStack() as stack:
            storage = state["storage"]
            if storage is None:
                s3_client = await stack.enter_async_context(
                    state["s3_session"].create_client(
                        "s3",
                        region_name=config.region,
                        endpoint_url=config.endpoint_url,
                    )
                )
                storage = StorageReclaimer(
                    s3_client,
                    config.bucket,
                    attempts=config.delete_attempts,
                    retry_delay=config.delete_retry_delay,
                    delay_unit=config.delay_unit_seconds,
                )

            runners = _stage_runners(config, state, storage)
            for name in STAGES:
                if name not in selected:
                    continue
                try:
                    outcome = await runners[name]()
                except FeatureDisabledError as e:
                    logger.info("stage_disabled", stage=name, reason=e.message)
                    results.append(StageResult(stage=name, status="disabled", error=e.message))
                    continue
                except Exception as e:
                    logger.error("stage_failed", stage=name, error=str(e))
                    results.append(StageResult(stage=name, status="failed", error=str(e)))
                    raise
                results.append(StageResult(stage=name, status="completed", result=outcome))
                logger.info("stage_completed", stage=name)

        duration = (datetime.now(UTC) - start_time).total_seconds()
        state["last_run_at"] = datetime.now(UTC)
        state["total_runs"] += 1
        state["last_error"] = None

        logger.info("pipeline_completed", duration=duration)
        return PipelineResult(run_id=run_id, stages=results, duration_seconds=duration)

    except Exception as e:
        state["last_error"] = str(e)
        state["total_runs"] += 1
        logger.error("pipeline_failed", error=str(e))
        raise
    finally:
        structlog.contextvars.unbind_contextvars("run_id")


async def shutdown_reclaim_state(state: ReclaimState) -> None:
    """Close the relational store if the state opened it."""
    if state["owns_db"]:
        try:
            await state["db"].close()
        except Exception as e:
            logger.warning("database_close_failed", error=str(e))

    logger.info("reclaim_state_shutdown_complete")
