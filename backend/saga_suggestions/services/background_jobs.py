"""Background execution of generation jobs and learning passes."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from time import perf_counter
from typing import Callable

from sqlalchemy import text
from sqlalchemy.orm import Session

from saga_suggestions.config import EngineConfig, get_engine_config
from saga_suggestions.db.session import SessionLocal
from saga_suggestions.errors import JobFailedError, NotFoundError
from saga_suggestions.models import SuggestionJob
from saga_suggestions.models.statuses import JobStatus
from saga_suggestions.prediction.extractor import FeatureExtractor, SagaContext
from saga_suggestions.prediction.oracle import SemanticOracle, build_oracle
from saga_suggestions.prediction.scorer import RelationshipScorer
from saga_suggestions.schemas.job import GenerationRunResult
from saga_suggestions.services.batch_jobs import candidate_pairs, claim_job, expire_stale_jobs, list_queued_job_ids
from saga_suggestions.services.entity_store import EntityStore, SqlEntityStore
from saga_suggestions.services.learning import load_effective_weights, process_pending_feedback
from saga_suggestions.services.list_cache import suggestion_list_cache
from saga_suggestions.services.suggestion_repository import pairs_with_open_suggestions, upsert_suggestion

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def run_generation_job(
    job_id: int,
    *,
    session_factory: SessionFactory = SessionLocal,
    store_factory: Callable[[Session], EntityStore] = SqlEntityStore,
    oracle: SemanticOracle | None = None,
    config: EngineConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = perf_counter,
) -> GenerationRunResult:
    """Claim a queued job and score every eligible pair of its saga in batches.

    Failures are recorded on the job row and returned, never re-raised, so a
    background task or worker loop keeps going.
    """

    active = config or get_engine_config()
    active_oracle = oracle if oracle is not None else build_oracle()
    db = session_factory()
    total_started = perf_counter()
    try:
        job = db.get(SuggestionJob, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if not claim_job(db, job_id):
            db.refresh(job)
            logger.info("suggestions.job_not_claimed job_id=%s status=%s", job_id, job.status)
            return _run_result(job)
        db.refresh(job)
        saga_id = job.saga_id

        try:
            _generate(db, job, store_factory(db), active_oracle, active, sleep=sleep, clock=clock)
        except Exception as exc:
            db.rollback()
            _mark_failed(db, job_id, exc)
            logger.exception(
                "suggestions.job_failed saga_id=%s job_id=%s elapsed_ms=%.2f",
                saga_id,
                job_id,
                (perf_counter() - total_started) * 1000.0,
            )
        finally:
            suggestion_list_cache.invalidate(saga_id)

        db.refresh(job)
        logger.info(
            (
                "suggestions.job_timing saga_id=%s job_id=%s status=%s pairs_total=%d "
                "pairs_processed=%d created=%d total_ms=%.2f"
            ),
            saga_id,
            job_id,
            job.status,
            job.pairs_total,
            job.pairs_processed,
            job.suggestions_created,
            (perf_counter() - total_started) * 1000.0,
        )
        return _run_result(job)
    finally:
        db.close()


def run_pending_jobs(
    *,
    session_factory: SessionFactory = SessionLocal,
    config: EngineConfig | None = None,
    **job_options,
) -> list[GenerationRunResult]:
    """Fail running jobs that lost their runner, then run every queued job once, oldest first.

    Queued jobs are picked up whatever their age; only running jobs are swept.
    """

    with session_factory() as db:
        expire_stale_jobs(db, config, include_queued=False)
        job_ids = list_queued_job_ids(db)
    return [
        run_generation_job(job_id, session_factory=session_factory, config=config, **job_options)
        for job_id in job_ids
    ]


def run_learning_job(
    saga_id: str,
    *,
    session_factory: SessionFactory = SessionLocal,
    config: EngineConfig | None = None,
) -> None:
    """Run one learning pass in a background-friendly DB session."""

    total_started = perf_counter()
    db = session_factory()
    try:
        process_pending_feedback(db, saga_id, config)
    except Exception:
        logger.exception(
            "learning.job_failed saga_id=%s elapsed_ms=%.2f",
            saga_id,
            (perf_counter() - total_started) * 1000.0,
        )
        raise
    finally:
        db.close()


def _generate(
    db: Session,
    job: SuggestionJob,
    store: EntityStore,
    oracle: SemanticOracle | None,
    config: EngineConfig,
    *,
    sleep: Callable[[float], None],
    clock: Callable[[], float],
) -> None:
    saga_id = job.saga_id
    extractor = FeatureExtractor(
        store,
        oracle=oracle,
        oracle_timeout_seconds=config.oracle_timeout_seconds,
    )
    scorer = RelationshipScorer(config)

    started = perf_counter()
    bound_statement_time(db, config.batch_timeout_seconds)
    context = extractor.load_context(saga_id)
    pairs = candidate_pairs(context, pairs_with_open_suggestions(db, saga_id))
    job.pairs_total = len(pairs)
    job.pairs_processed = 0
    job.suggestions_created = 0
    job.heartbeat_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(
        "suggestions.job_started saga_id=%s job_id=%s entities=%d pairs=%d load_ms=%.2f",
        saga_id,
        job.id,
        len(context.entities),
        len(pairs),
        (perf_counter() - started) * 1000.0,
    )

    batches = [pairs[index : index + config.batch_size] for index in range(0, len(pairs), config.batch_size)]
    for batch_number, batch in enumerate(batches, start=1):
        db.refresh(job)
        if job.status != JobStatus.RUNNING.value:
            logger.warning(
                "suggestions.job_lost saga_id=%s job_id=%s status=%s batches_done=%d",
                saga_id,
                job.id,
                job.status,
                batch_number - 1,
            )
            return
        if job.cancel_requested:
            job.status = JobStatus.CANCELLED.value
            job.finished_at = datetime.now(timezone.utc)
            db.commit()
            logger.info(
                "suggestions.job_cancelled saga_id=%s job_id=%s batches_done=%d",
                saga_id,
                job.id,
                batch_number - 1,
            )
            return

        created = _run_batch(db, saga_id, batch, context, extractor, scorer, config, clock=clock)
        job.pairs_processed += len(batch)
        job.suggestions_created += created
        job.heartbeat_at = datetime.now(timezone.utc)
        db.commit()
        suggestion_list_cache.invalidate(saga_id)

        if batch_number < len(batches) and config.batch_pause_seconds > 0:
            sleep(config.batch_pause_seconds)

    db.refresh(job)
    if job.status != JobStatus.RUNNING.value:
        logger.warning("suggestions.job_lost saga_id=%s job_id=%s status=%s", saga_id, job.id, job.status)
        return
    job.status = JobStatus.COMPLETED.value
    job.finished_at = datetime.now(timezone.utc)
    db.commit()


def _run_batch(
    db: Session,
    saga_id: str,
    batch: list[tuple[int, int]],
    context: SagaContext,
    extractor: FeatureExtractor,
    scorer: RelationshipScorer,
    config: EngineConfig,
    *,
    clock: Callable[[], float],
) -> int:
    batch_started = clock()
    bound_statement_time(db, config.batch_timeout_seconds)
    weights = load_effective_weights(db, saga_id, config.learning_min_samples)
    created = 0
    below_threshold = 0
    for source_id, target_id in batch:
        remaining = config.batch_timeout_seconds - (clock() - batch_started)
        if remaining <= 0:
            raise JobFailedError(
                f"Batch exceeded {config.batch_timeout_seconds:.1f}s before pair {source_id}-{target_id}"
            )
        bound_statement_time(db, remaining)
        vector = extractor.extract(saga_id, source_id, target_id, context=context)
        if not vector.is_empty:
            signals = extractor.pair_signals(saga_id, source_id, target_id, context=context)
            prediction = scorer.score(vector, signals, weights)
            if prediction.confidence >= config.min_suggestion_confidence:
                _, was_created = upsert_suggestion(
                    db,
                    saga_id,
                    source_id,
                    target_id,
                    prediction,
                    vector,
                    store=extractor.store,
                )
                created += int(was_created)
            else:
                below_threshold += 1

        elapsed = clock() - batch_started
        if elapsed > config.batch_timeout_seconds:
            raise JobFailedError(
                f"Batch exceeded {config.batch_timeout_seconds:.1f}s after {elapsed:.1f}s"
            )

    logger.info(
        "suggestions.batch_timing saga_id=%s pairs=%d created=%d below_threshold=%d elapsed_ms=%.2f",
        saga_id,
        len(batch),
        created,
        below_threshold,
        (clock() - batch_started) * 1000.0,
    )
    return created


def bound_statement_time(db: Session, seconds: float) -> bool:
    """Cap every statement of the current transaction at `seconds` on PostgreSQL.

    A hung store query is then cancelled by the server and fails the job.
    SQLite has no statement timeout; returns False there.
    """

    if db.get_bind().dialect.name != "postgresql":
        return False
    milliseconds = max(1, int(seconds * 1000))
    db.execute(text("SELECT set_config('statement_timeout', :value, true)"), {"value": f"{milliseconds}ms"})
    return True


def _mark_failed(db: Session, job_id: int, exc: Exception) -> None:
    job = db.get(SuggestionJob, job_id, populate_existing=True)
    if job is None:
        return
    job.status = JobStatus.FAILED.value
    job.error_message = f"{type(exc).__name__}: {exc}"[:2000]
    job.finished_at = datetime.now(timezone.utc)
    db.commit()


def _run_result(job: SuggestionJob) -> GenerationRunResult:
    return GenerationRunResult(
        job_id=job.id,
        saga_id=job.saga_id,
        status=job.status,
        pairs_total=job.pairs_total,
        pairs_processed=job.pairs_processed,
        suggestions_created=job.suggestions_created,
        error_message=job.error_message,
    )
