# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Page-Concurrent Runner - Drives a cleanup job page by page.

Each page is fetched from the start of the candidate query, fanned out
to one task per candidate (bounded by a semaphore when a concurrency
limit is given), and fully awaited before the error count is checked.
Any failed candidate interrupts the whole job; the side effects of the
candidates that succeeded persist and the next run retries the rest.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Sequence, TypeVar

import structlog

from edgegc.exceptions import JobInterruptedError

logger = structlog.get_logger()

C = TypeVar("C")


@dataclass
class JobResult:
    """Outcome of one paged cleanup job."""

    job: str
    pages: int = 0
    candidates: int = 0
    errors: int = 0
    stopped_by_flag: bool = False
    reached_max_pages: bool = False


@dataclass
class PageOutcome(Generic[C]):
    """Per-candidate results of a single page."""

    candidates: Sequence[C]
    errors: List[BaseException] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)


async def process_page(
    candidates: Sequence[C],
    process: Callable[[C], Awaitable[None]],
    max_concurrency: int | None = None,
) -> PageOutcome[C]:
    """
    Run process() for every candidate of a page and wait for all of them.

    Args:
        candidates: The page
        process: Per-candidate coroutine function
        max_concurrency: Task bound; None runs every candidate at once

    Returns:
        PageOutcome with the errors in candidate order
    """
    limit = max_concurrency or max(len(candidates), 1)
    sem = asyncio.Semaphore(limit)

    async def _run_one(candidate: C) -> BaseException | None:
        async with sem:
            try:
                await process(candidate)
            except Exception as e:
                return e
        return None

    results = await asyncio.gather(*[_run_one(c) for c in candidates])
    return PageOutcome(
        candidates=candidates,
        errors=[r for r in results if r is not None],
    )


async def run_paged_job(
    job: str,
    fetch_page: Callable[[], Awaitable[Sequence[C]]],
    process: Callable[[C], Awaitable[None]],
    *,
    max_pages: int,
    is_enabled: Callable[[], bool] = lambda: True,
    max_concurrency: int | None = None,
) -> JobResult:
    """
    Process candidate pages until none remain.

    The loop stops when a page comes back empty, when max_pages pages
    were processed, or when is_enabled() turns false at a page boundary.

    Args:
        job: Job name used in logs and the result
        fetch_page: Coroutine function returning the next page
        process: Per-candidate coroutine function
        max_pages: Safety ceiling on the number of pages
        is_enabled: Feature-flag check evaluated before every page
        max_concurrency: Per-page task bound (None = page size)

    Returns:
        JobResult with page and candidate counts

    Raises:
        QueryError: If a page cannot be fetched
        JobInterruptedError: If any candidate of a page failed
    """
    result = JobResult(job=job)
    page = 0

    while True:
        if page >= max_pages:
            result.reached_max_pages = True
            logger.warning("job_max_pages_reached", job=job, max_pages=max_pages)
            break
        if not is_enabled():
            result.stopped_by_flag = True
            logger.warning("job_feature_disabled", job=job, page=page)
            break

        candidates = await fetch_page()
        if not candidates:
            break

        outcome = await process_page(candidates, process, max_concurrency)
        result.candidates += len(candidates)
        result.errors += outcome.failed

        if outcome.failed:
            logger.error(
                "job_interrupted",
                job=job,
                page=page,
                candidates_count=result.candidates,
                errors_count=outcome.failed,
            )
            raise JobInterruptedError(
                f"Cleanup job {job} interrupted by {outcome.failed} failed candidates",
                details={
                    "job": job,
                    "page": page,
                    "candidates": result.candidates,
                    "errors": outcome.failed,
                    "first_error": str(outcome.errors[0]),
                },
            ) from outcome.errors[0]

        page += 1
        result.pages = page
        logger.debug("job_page_processed", job=job, page=page, candidates=len(candidates))

    logger.info(
        "job_finished",
        job=job,
        pages=result.pages,
        candidates_count=result.candidates,
    )
    return result
