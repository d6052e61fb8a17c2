"""Warm-intro sync: refresh relationship paths and priority for prospects."""

from __future__ import annotations

import argparse
import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial

from app.clients.relationship_graph import RelationshipGraphClient
from app.config import settings
from app.core.backoff import retry_async
from app.models.discovery import Prospect, ProspectStatus
from app.models.relationship import CompanyConnections
from app.models.run import RunError
from app.observability.metrics import metrics
from app.services.scoring.errors import ConfigurationError, ScoringEngineError, TransientProviderError
from app.services.scoring.path_finder import PathLookup
from app.services.scoring.repositories import ProspectingRepository, build_repository

logger = logging.getLogger("pipelines.connection_sync")

DEFAULT_STATUSES = (ProspectStatus.NEW, ProspectStatus.REVIEWING, ProspectStatus.QUALIFIED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConnectionSyncSummary:
    """Counts reported after a sync run."""

    total: int = 0
    synced: int = 0
    with_paths: int = 0
    warm_intros: int = 0
    skipped: int = 0
    errors: int = 0
    duration_ms: float = 0.0
    error_details: list[RunError] = field(default_factory=list)

    def as_log_extra(self) -> dict[str, object]:
        return {
            "total": self.total,
            "synced": self.synced,
            "with_paths": self.with_paths,
            "warm_intros": self.warm_intros,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_ms": f"{self.duration_ms:.2f}",
        }


class ConnectionSync:
    """Looks up paths for many prospects with bounded concurrency.

    Each lookup is followed by a fixed pause to stay under the graph's rate
    limit. Transient provider errors are retried with bounded backoff, then
    counted against the run; one company's failure never stops the batch.
    """

    def __init__(
        self,
        repository: ProspectingRepository,
        lookup: PathLookup,
        *,
        concurrency: int | None = None,
        delay_seconds: float | None = None,
        retry_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._lookup = lookup
        self._concurrency = concurrency or settings.path_lookup_concurrency
        self._delay_seconds = (
            settings.path_lookup_delay_ms / 1000 if delay_seconds is None else delay_seconds
        )
        self._retry_attempts = retry_attempts or settings.provider_retry_attempts
        if self._concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self._retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        team_id: str,
        *,
        statuses: Sequence[ProspectStatus] = DEFAULT_STATUSES,
        limit: int | None = None,
        title_keywords: Sequence[str] | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> ConnectionSyncSummary:
        start = time.perf_counter()
        prospects = self._repository.list_prospects(team_id, statuses=statuses)
        if limit is not None:
            prospects = prospects[: max(0, limit)]
        summary = ConnectionSyncSummary(total=len(prospects))
        if not prospects:
            logger.info("connections.no_prospects", extra={"team_id": team_id})
            return summary

        semaphore = asyncio.Semaphore(self._concurrency)
        coroutines = [
            self._with_semaphore(semaphore, prospect, title_keywords, stop_event) for prospect in prospects
        ]
        outcomes = await asyncio.gather(*coroutines, return_exceptions=True)

        for prospect, outcome in zip(prospects, outcomes, strict=False):
            if outcome is None:
                summary.skipped += 1
            elif isinstance(outcome, CompanyConnections):
                summary.synced += 1
                if outcome.paths:
                    summary.with_paths += 1
                if outcome.has_warm_intro:
                    summary.warm_intros += 1
            elif isinstance(outcome, BaseException):
                summary.errors += 1
                code = outcome.code if isinstance(outcome, ScoringEngineError) else "SYNC_FAILED"
                summary.error_details.append(
                    RunError(ref=prospect.company_domain, code=code, message=str(outcome)[:500])
                )
                logger.error(
                    "connections.sync_failed",
                    extra={"company_domain": prospect.company_domain, "code": code},
                    exc_info=outcome,
                )

        summary.duration_ms = (time.perf_counter() - start) * 1000
        metrics.timing("connections.sync_duration_ms", summary.duration_ms)
        metrics.increment("connections.synced", summary.synced)
        metrics.increment("connections.errors", summary.errors)
        logger.info("connections.run_complete", extra=summary.as_log_extra())
        return summary

    async def _with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        prospect: Prospect,
        title_keywords: Sequence[str] | None,
        stop_event: asyncio.Event | None,
    ) -> CompanyConnections | None:
        async with semaphore:
            if stop_event is not None and stop_event.is_set():
                return None
            try:
                connections = await retry_async(
                    partial(
                        self._lookup.find,
                        prospect.company_domain,
                        company_name=prospect.company_name,
                        title_keywords=title_keywords,
                    ),
                    retryable=(TransientProviderError,),
                    max_attempts=self._retry_attempts,
                    sleep=self._sleep,
                    on_retry=partial(self._log_retry, prospect.company_domain),
                )
            finally:
                if self._delay_seconds > 0:
                    await self._sleep(self._delay_seconds)
            self._apply(prospect, connections)
            return connections

    def _apply(self, prospect: Prospect, connections: CompanyConnections) -> None:
        prospect.connection_score = connections.connection_score
        prospect.has_warm_intro = connections.has_warm_intro
        prospect.warm_intro_count = connections.warm_intro_count
        prospect.best_connector = connections.best_connector
        prospect.connections_synced_at = self._clock()
        self._repository.save_connections(prospect)

    @staticmethod
    def _log_retry(company_domain: str, exc: BaseException, attempt: int, delay: float) -> None:
        code = exc.code if isinstance(exc, ScoringEngineError) else None
        logger.warning(
            "provider.retry",
            extra={"company_domain": company_domain, "attempt": attempt, "delay": round(delay, 2), "code": code},
        )
        metrics.increment("provider.retry", tags={"code": code or "unknown"})


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh warm-intro paths and priority scores.")
    parser.add_argument("--team-id", default=settings.default_team_id, help="Owning team.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of prospects to sync.")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.path_lookup_concurrency,
        help="Concurrent relationship-graph lookups.",
    )
    parser.add_argument(
        "--titles",
        nargs="*",
        default=None,
        help="Preferred target titles, e.g. CTO 'VP Engineering'.",
    )
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    return parser.parse_args(argv)


async def _run_async(args: argparse.Namespace) -> ConnectionSyncSummary:
    # Fails before any prospect is touched when the key is missing.
    async with RelationshipGraphClient.from_settings() as graph:
        repository = build_repository(args.database_url)
        lookup = PathLookup(
            graph,
            query_size=settings.path_query_size,
            pause_seconds=settings.path_lookup_delay_ms / 1000,
        )
        sync = ConnectionSync(repository, lookup, concurrency=args.concurrency)
        return await sync.run(args.team_id, limit=args.limit, title_keywords=args.titles)


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=settings.log_level.upper())
    args = parse_args(argv)
    try:
        summary = asyncio.run(_run_async(args))
    except ConfigurationError as exc:
        logger.error("connections.config_error", extra={"code": exc.code, "error": str(exc)})
        return 1
    print(
        f"synced={summary.synced}/{summary.total} with_paths={summary.with_paths} "
        f"warm_intros={summary.warm_intros} errors={summary.errors}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
