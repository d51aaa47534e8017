"""Durable generation job records: start, claim, progress and cancellation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from saga_suggestions.config import EngineConfig, get_engine_config
from saga_suggestions.errors import ConflictError, NotFoundError, RateLimitedError
from saga_suggestions.models import SuggestionJob
from saga_suggestions.models.statuses import ACTIVE_JOB_STATUSES, JobStatus
from saga_suggestions.prediction.extractor import SagaContext
from saga_suggestions.schemas.job import CancelResult, JobProgress, SuggestionJobRead
from saga_suggestions.services.entity_store import EntityStore

logger = logging.getLogger(__name__)

IDLE_STATUS = "idle"


def start_batch(
    db: Session,
    saga_id: str,
    config: EngineConfig | None = None,
    *,
    now: datetime | None = None,
) -> SuggestionJobRead:
    """Queue a generation job for a saga and return it without running it."""

    active = config or get_engine_config()
    clean_saga_id = saga_id.strip()
    if not clean_saga_id:
        raise NotFoundError("Saga id must be non-empty")
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)

    expire_stale_jobs(db, active, now=current, saga_id=clean_saga_id)

    recent_count, oldest_recent = _window_starts(db, clean_saga_id, active, current)
    if recent_count >= active.rate_limit_max_jobs:
        raise _rate_limited(clean_saga_id, active, current, recent_count, oldest_recent)

    active_job_id = _active_job_id(db, clean_saga_id)
    if active_job_id is not None:
        raise ConflictError(f"Saga {clean_saga_id} already has active job {active_job_id}")

    return queue_job(db, clean_saga_id, active, now=current)


def queue_job(
    db: Session,
    saga_id: str,
    config: EngineConfig,
    *,
    now: datetime,
) -> SuggestionJobRead:
    """Insert a queued job and re-check both start limits inside the same transaction.

    The partial unique index on active jobs rejects a second queued or running
    job for the saga, and the window is recounted after the insert, so two
    starts that raced past the checks in `start_batch` cannot both commit.
    """

    job = SuggestionJob(
        saga_id=saga_id,
        status=JobStatus.QUEUED.value,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        active_job_id = _active_job_id(db, saga_id)
        logger.info("suggestions.start_conflict saga_id=%s active_job_id=%s", saga_id, active_job_id)
        raise ConflictError(f"Saga {saga_id} already has active job {active_job_id}") from exc

    recent_count, oldest_recent = _window_starts(db, saga_id, config, now)
    if recent_count > config.rate_limit_max_jobs:
        db.rollback()
        raise _rate_limited(saga_id, config, now, recent_count - 1, oldest_recent)

    db.commit()
    db.refresh(job)
    logger.info("suggestions.job_queued saga_id=%s job_id=%s", saga_id, job.id)
    return SuggestionJobRead.model_validate(job)


def expire_stale_jobs(
    db: Session,
    config: EngineConfig | None = None,
    *,
    now: datetime | None = None,
    saga_id: str | None = None,
    include_queued: bool = True,
) -> int:
    """Fail jobs whose runner went away so the saga can start again.

    A running job is stale when its last heartbeat is older than
    `job_stale_after_seconds`; a queued job when nobody claimed it within
    that time. Returns the number of jobs failed.
    """

    active = config or get_engine_config()
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    cutoff = current - timedelta(seconds=active.job_stale_after_seconds)
    last_seen = func.coalesce(SuggestionJob.heartbeat_at, SuggestionJob.started_at, SuggestionJob.created_at)

    stale_conditions = [and_(SuggestionJob.status == JobStatus.RUNNING.value, last_seen < cutoff)]
    if include_queued:
        stale_conditions.append(
            and_(SuggestionJob.status == JobStatus.QUEUED.value, SuggestionJob.created_at < cutoff)
        )
    statement = update(SuggestionJob).where(or_(*stale_conditions))
    if saga_id is not None:
        statement = statement.where(SuggestionJob.saga_id == saga_id)
    result = db.execute(
        statement.values(
            status=JobStatus.FAILED.value,
            error_message=(
                f"Job expired: no heartbeat for {active.job_stale_after_seconds:.0f}s; "
                "the runner stopped before finishing"
            ),
            finished_at=current,
        ).execution_options(synchronize_session=False)
    )
    db.commit()
    expired = int(result.rowcount or 0)
    if expired:
        logger.warning(
            "suggestions.jobs_expired saga_id=%s expired=%d cutoff=%s",
            saga_id or "*",
            expired,
            cutoff.isoformat(),
        )
    return expired


def claim_job(db: Session, job_id: int) -> bool:
    """Atomically move a queued job to running; False when someone else got it."""

    now = datetime.now(timezone.utc)
    result = db.execute(
        update(SuggestionJob)
        .where(SuggestionJob.id == job_id, SuggestionJob.status == JobStatus.QUEUED.value)
        .values(status=JobStatus.RUNNING.value, started_at=now, heartbeat_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def list_queued_job_ids(db: Session) -> list[int]:
    return list(
        db.scalars(
            select(SuggestionJob.id)
            .where(SuggestionJob.status == JobStatus.QUEUED.value)
            .order_by(SuggestionJob.created_at.asc(), SuggestionJob.id.asc())
        ).all()
    )


def get_progress(db: Session, saga_id: str) -> JobProgress:
    """Latest job state for a saga, or `idle` when it never ran."""

    job = _latest_job(db, saga_id)
    if job is None:
        return JobProgress(saga_id=saga_id, status=IDLE_STATUS)
    percent = 100.0 * job.pairs_processed / job.pairs_total if job.pairs_total else 0.0
    if job.status == JobStatus.COMPLETED.value:
        percent = 100.0
    return JobProgress(
        saga_id=saga_id,
        status=job.status,
        job_id=job.id,
        pairs_total=job.pairs_total,
        pairs_processed=job.pairs_processed,
        suggestions_created=job.suggestions_created,
        percent_complete=round(percent, 2),
        error_message=job.error_message,
        started_at=job.started_at,
        heartbeat_at=job.heartbeat_at,
        finished_at=job.finished_at,
    )


def cancel(db: Session, saga_id: str) -> CancelResult:
    """Cancel a queued job outright or ask a running one to stop after its batch."""

    now = datetime.now(timezone.utc)
    queued = db.execute(
        update(SuggestionJob)
        .where(SuggestionJob.saga_id == saga_id, SuggestionJob.status == JobStatus.QUEUED.value)
        .values(status=JobStatus.CANCELLED.value, cancel_requested=True, finished_at=now)
        .execution_options(synchronize_session=False)
    )
    running = db.execute(
        update(SuggestionJob)
        .where(SuggestionJob.saga_id == saga_id, SuggestionJob.status == JobStatus.RUNNING.value)
        .values(cancel_requested=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    cancelled = bool(queued.rowcount or running.rowcount)
    logger.info(
        "suggestions.cancel saga_id=%s queued_cancelled=%d running_flagged=%d",
        saga_id,
        queued.rowcount or 0,
        running.rowcount or 0,
    )
    return CancelResult(saga_id=saga_id, cancelled=cancelled)


def enqueue_refresh_all(
    db: Session,
    store: EntityStore,
    config: EngineConfig | None = None,
) -> dict[str, int | None]:
    """Queue a job for every saga; rate-limited or busy sagas map to None."""

    queued: dict[str, int | None] = {}
    for saga_id in store.list_saga_ids():
        try:
            queued[saga_id] = start_batch(db, saga_id, config).id
        except (RateLimitedError, ConflictError) as exc:
            db.rollback()
            logger.info("suggestions.refresh_skipped saga_id=%s reason=%s", saga_id, type(exc).__name__)
            queued[saga_id] = None
    return queued


def candidate_pairs(context: SagaContext, skip: set[tuple[int, int]]) -> list[tuple[int, int]]:
    """Every unordered entity pair (A < B) not already linked or suggested."""

    related = {
        (min(edge.source_entity_id, edge.target_entity_id), max(edge.source_entity_id, edge.target_entity_id))
        for edge in context.relationships
    }
    entity_ids = sorted(context.entities)
    pairs: list[tuple[int, int]] = []
    for index, source_id in enumerate(entity_ids):
        for target_id in entity_ids[index + 1 :]:
            pair = (source_id, target_id)
            if pair in skip or pair in related:
                continue
            pairs.append(pair)
    return pairs


def _latest_job(db: Session, saga_id: str) -> SuggestionJob | None:
    return db.scalar(
        select(SuggestionJob)
        .where(SuggestionJob.saga_id == saga_id)
        .order_by(SuggestionJob.created_at.desc(), SuggestionJob.id.desc())
        .limit(1)
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _window_starts(
    db: Session,
    saga_id: str,
    config: EngineConfig,
    current: datetime,
) -> tuple[int, datetime | None]:
    window_start = current - timedelta(seconds=config.rate_limit_window_seconds)
    count, oldest = db.execute(
        select(func.count(SuggestionJob.id), func.min(SuggestionJob.created_at)).where(
            SuggestionJob.saga_id == saga_id,
            SuggestionJob.created_at >= window_start,
        )
    ).one()
    return int(count or 0), oldest


def _rate_limited(
    saga_id: str,
    config: EngineConfig,
    current: datetime,
    recent_count: int,
    oldest_recent: datetime | None,
) -> RateLimitedError:
    window_start = current - timedelta(seconds=config.rate_limit_window_seconds)
    retry_after = config.rate_limit_window_seconds
    if oldest_recent is not None:
        retry_after = max(1, int((_as_utc(oldest_recent) - window_start).total_seconds()))
    logger.info(
        "suggestions.rate_limited saga_id=%s recent_jobs=%d retry_after_seconds=%d",
        saga_id,
        recent_count,
        retry_after,
    )
    return RateLimitedError(
        f"Saga {saga_id} started {recent_count} jobs in the last {config.rate_limit_window_seconds} seconds",
        retry_after_seconds=retry_after,
    )


def _active_job_id(db: Session, saga_id: str) -> int | None:
    return db.scalar(
        select(SuggestionJob.id).where(
            SuggestionJob.saga_id == saga_id,
            SuggestionJob.status.in_(ACTIVE_JOB_STATUSES),
        )
    )
