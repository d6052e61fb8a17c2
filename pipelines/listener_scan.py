"""Listener scan: turn a batch of candidate texts into discoveries."""

from __future__ import annotations

import argparse
import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from itertools import islice
from pathlib import Path

from app.config import settings
from app.models.discovery import SourceKind
from app.models.review import TransitionOutcome
from app.models.run import ListenerRun, RunStatus, RunSummary, RunType
from app.observability.metrics import metrics
from app.services.scoring.engine import ScoringEngine
from app.services.scoring.errors import ConfigurationError, MalformedInputError, ScoringEngineError
from app.services.scoring.repositories import build_repository
from pipelines.signal_sources import CandidateText, JsonFileSignalSource, TextSignalSource

logger = logging.getLogger("pipelines.listener_scan")


def _batched(items: Iterable[CandidateText], size: int) -> Iterator[list[CandidateText]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


def _stopped(stop_event: threading.Event | None) -> bool:
    return stop_event is not None and stop_event.is_set()


def run_scan(
    source: TextSignalSource,
    engine: ScoringEngine,
    *,
    team_id: str | None = None,
    run_type: RunType = RunType.MANUAL,
    limit: int | None = None,
    batch_size: int | None = None,
    stop_event: threading.Event | None = None,
) -> RunSummary:
    """Scan one source and persist discoveries, returning the run summary.

    Items that are too short, carry no signal or name no company are counted
    as skipped. Any other per-item failure is recorded on the run and the
    scan moves on. A failure of the source itself ends the run as failed.
    """
    size = settings.scan_batch_size if batch_size is None else batch_size
    if size < 1:
        raise ConfigurationError("scan batch size must be >= 1", code="CONFIG_INVALID")
    if not len(engine.table):
        raise ConfigurationError("Keyword rule table is empty.", code="RULES_SCHEMA_INVALID")

    repository = engine.repository
    run = ListenerRun(
        team_id=team_id or settings.default_team_id,
        source_kind=source.source_kind,
        source_name=source.name,
        run_type=run_type,
        ruleset_sha256=engine.table.ruleset_sha256,
    )
    repository.save_run(run)
    logger.info(
        "scan.run_started",
        extra={"run_id": str(run.id), "source": source.name, "ruleset_version": engine.table.version},
    )
    failed = False
    with metrics.timed("scan.duration_ms", tags={"source": source.name}):
        try:
            for batch in _batched(source.fetch_candidate_texts(limit), size):
                for candidate in batch:
                    if _stopped(stop_event):
                        break
                    _scan_item(candidate, engine, run, source.source_kind)
                repository.save_run(run)
                if _stopped(stop_event):
                    logger.warning(
                        "scan.stopped", extra={"run_id": str(run.id), "items_scanned": run.items_scanned}
                    )
                    break
        except ScoringEngineError as exc:
            failed = True
            run.record_error(code=exc.code, message=str(exc))
            logger.exception("scan.source_failed", extra={"run_id": str(run.id), "code": exc.code})
        except OSError as exc:
            failed = True
            run.record_error(code="SOURCE_UNAVAILABLE", message=str(exc))
            logger.exception("scan.source_failed", extra={"run_id": str(run.id), "code": "SOURCE_UNAVAILABLE"})

    run.finalize(failed=failed)
    repository.save_run(run)
    summary = run.summary()
    metrics.increment("scan.items_scanned", summary.items_scanned, tags={"source": source.name})
    metrics.increment("scan.errors", summary.errors, tags={"source": source.name})
    logger.info("scan.run_complete", extra=summary.as_log_extra())
    return summary


def _scan_item(candidate: CandidateText, engine: ScoringEngine, run: ListenerRun, source_kind: SourceKind) -> None:
    run.items_scanned += 1
    try:
        results = engine.ingest_text(
            candidate.raw_text,
            team_id=run.team_id,
            source_kind=source_kind,
            source_ref=candidate.source_ref,
            title=candidate.title,
            run_id=run.id,
            published_at=candidate.published_at,
        )
    except MalformedInputError as exc:
        run.skipped += 1
        logger.debug("scan.item_skipped", extra={"source_ref": candidate.source_ref, "code": exc.code})
        return
    except (ScoringEngineError, ValueError) as exc:
        code = getattr(exc, "code", "SCAN_ITEM_INVALID")
        run.record_error(ref=candidate.source_ref, code=code, message=str(exc))
        logger.warning(
            "scan.item_failed",
            extra={"run_id": str(run.id), "source_ref": candidate.source_ref, "code": code},
        )
        return

    for result in results:
        if result.outcome == TransitionOutcome.DUPLICATE:
            run.duplicates_skipped += 1
            continue
        run.discoveries_created += 1
        if result.auto_promoted:
            run.auto_promoted += 1


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan candidate texts for buying signals.")
    parser.add_argument("--input", type=Path, required=True, help="JSON fixture of candidate texts.")
    parser.add_argument(
        "--source-kind",
        choices=[kind.value for kind in SourceKind],
        default=SourceKind.MANUAL.value,
        help="Kind of source the texts came from.",
    )
    parser.add_argument("--team-id", default=settings.default_team_id, help="Owning team.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of texts to scan.")
    parser.add_argument("--batch-size", type=int, default=settings.scan_batch_size, help="Texts per batch.")
    parser.add_argument(
        "--run-type",
        choices=[run_type.value for run_type in RunType],
        default=RunType.MANUAL.value,
    )
    parser.add_argument("--rules", type=Path, default=None, help="Keyword rule YAML override.")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=settings.log_level.upper())
    args = parse_args(argv)
    try:
        if not args.input.exists():
            raise ConfigurationError(f"Signal fixture not found: {args.input}", code="SOURCE_NOT_FOUND")
        engine = ScoringEngine.from_settings(
            repository=build_repository(args.database_url), rules_path=args.rules
        )
        source = JsonFileSignalSource(args.input, source_kind=SourceKind(args.source_kind))
        summary = run_scan(
            source,
            engine,
            team_id=args.team_id,
            run_type=RunType(args.run_type),
            limit=args.limit,
            batch_size=args.batch_size,
        )
    except ConfigurationError as exc:
        logger.error("scan.config_error", extra={"code": exc.code, "error": str(exc)})
        return 1
    print(
        f"run {summary.run_id} {summary.status.value}: scanned={summary.items_scanned} "
        f"created={summary.discoveries_created} duplicates={summary.duplicates_skipped} "
        f"auto_promoted={summary.auto_promoted} skipped={summary.skipped} errors={summary.errors}"
    )
    return 1 if summary.status == RunStatus.FAILED else 0


if __name__ == "__main__":
    raise SystemExit(main())
