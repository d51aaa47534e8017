"""Integration tests for generation jobs: rate limits, progress, cancellation and timeouts."""

from __future__ import annotations

import itertools
import os
import tempfile
import threading
import time
import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from saga_suggestions.config import EngineConfig
from saga_suggestions.errors import ConflictError, NotFoundError, RateLimitedError
from saga_suggestions.models import RelationshipSuggestion, SagaEntity, SuggestionFeature, SuggestionJob
from saga_suggestions.models.base import Base
from saga_suggestions.routers.error_mapping import to_http_exception
from saga_suggestions.services.background_jobs import bound_statement_time, run_generation_job, run_pending_jobs
from saga_suggestions.services.batch_jobs import (
    cancel,
    claim_job,
    enqueue_refresh_all,
    expire_stale_jobs,
    get_progress,
    queue_job,
    start_batch,
)
from saga_suggestions.services.entity_store import SqlEntityStore
from saga_suggestions.services.list_cache import suggestion_list_cache
from saga_builders import clear_all, seed_rebellion

CONFIG = EngineConfig(
    auto_accept_enabled=False,
    min_suggestion_confidence=0.0,
    batch_size=2,
    batch_pause_seconds=0.5,
    batch_timeout_seconds=15.0,
    rate_limit_max_jobs=5,
    rate_limit_window_seconds=3600,
)


class BatchJobTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(bind=cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(bind=cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db = self.SessionLocal()
        clear_all(self.db)
        suggestion_list_cache.invalidate()
        self.entities = seed_rebellion(self.db, "saga-1")
        self.sleeps: list[float] = []

    def tearDown(self) -> None:
        self.db.close()

    def _run(self, job_id: int, **options):
        options.setdefault("sleep", self.sleeps.append)
        result = run_generation_job(job_id, session_factory=self.SessionLocal, config=CONFIG, **options)
        self.db.expire_all()
        return result

    def _suggestion_for(self, left: str, right: str) -> RelationshipSuggestion | None:
        low, high = sorted((self.entities[left].id, self.entities[right].id))
        return self.db.scalar(
            select(RelationshipSuggestion).where(
                RelationshipSuggestion.source_entity_id == low,
                RelationshipSuggestion.target_entity_id == high,
            )
        )

    def test_progress_is_idle_before_any_job(self) -> None:
        progress = get_progress(self.db, "saga-1")

        self.assertEqual(progress.status, "idle")
        self.assertIsNone(progress.job_id)
        self.assertEqual(progress.percent_complete, 0.0)

    def test_job_scores_unlinked_pairs_in_batches(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)
        self.assertEqual(job.status, "queued")
        self.assertEqual(get_progress(self.db, "saga-1").status, "queued")

        result = self._run(job.id)

        self.assertEqual(result.status, "completed")
        self.assertEqual(result.pairs_total, 6)
        self.assertEqual(result.pairs_processed, 6)
        self.assertEqual(result.suggestions_created, 6)
        self.assertEqual(self.sleeps, [0.5, 0.5])
        self.assertEqual(self._suggestion_for("luke", "obi_wan").suggested_type, "mentor")
        self.assertEqual(self._suggestion_for("luke", "vader").suggested_type, "enemy")
        self.assertIsNone(self._suggestion_for("luke", "rebels"))
        mentor = self._suggestion_for("luke", "obi_wan")
        features = self.db.scalars(
            select(SuggestionFeature.feature_type).where(SuggestionFeature.suggestion_id == mentor.id)
        ).all()
        self.assertEqual(len(features), 7)
        progress = get_progress(self.db, "saga-1")
        self.assertEqual(progress.status, "completed")
        self.assertEqual(progress.percent_complete, 100.0)
        self.assertIsNotNone(progress.finished_at)

    def test_rerun_creates_no_duplicates(self) -> None:
        self._run(start_batch(self.db, "saga-1", CONFIG).id)

        second = self._run(start_batch(self.db, "saga-1", CONFIG).id)

        self.assertEqual(second.status, "completed")
        self.assertEqual(second.pairs_total, 0)
        self.assertEqual(second.suggestions_created, 0)
        self.assertEqual(len(self.db.scalars(select(RelationshipSuggestion)).all()), 6)

    def test_one_active_job_per_saga(self) -> None:
        start_batch(self.db, "saga-1", CONFIG)

        with self.assertRaises(ConflictError):
            start_batch(self.db, "saga-1", CONFIG)
        other = start_batch(self.db, "saga-2", CONFIG)
        self.assertEqual(other.saga_id, "saga-2")

    def test_sixth_start_in_window_is_rate_limited(self) -> None:
        base = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        for offset in range(5):
            start_batch(self.db, "saga-1", CONFIG, now=base + timedelta(seconds=offset))
            self.assertTrue(cancel(self.db, "saga-1").cancelled)

        with self.assertRaises(RateLimitedError) as raised:
            start_batch(self.db, "saga-1", CONFIG, now=base + timedelta(seconds=5))

        self.assertEqual(raised.exception.retry_after_seconds, 3595)
        http_error = to_http_exception(raised.exception)
        self.assertEqual(http_error.status_code, 429)
        self.assertEqual(http_error.headers["Retry-After"], "3595")
        self.assertEqual(start_batch(self.db, "saga-2", CONFIG, now=base + timedelta(seconds=5)).status, "queued")
        later = start_batch(self.db, "saga-1", CONFIG, now=base + timedelta(seconds=3601))
        self.assertEqual(later.status, "queued")

    def test_cancel_queued_job_prevents_it_from_running(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)

        self.assertTrue(cancel(self.db, "saga-1").cancelled)
        result = self._run(job.id)

        self.assertEqual(result.status, "cancelled")
        self.assertEqual(result.pairs_processed, 0)
        self.assertFalse(cancel(self.db, "saga-1").cancelled)
        self.assertEqual(self.db.scalars(select(RelationshipSuggestion)).all(), [])

    def test_cancel_stops_running_job_between_batches(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)

        def cancel_during_pause(seconds: float) -> None:
            with self.SessionLocal() as other:
                cancel(other, "saga-1")

        result = self._run(job.id, sleep=cancel_during_pause)

        self.assertEqual(result.status, "cancelled")
        self.assertEqual(result.pairs_processed, 2)
        self.assertEqual(result.pairs_total, 6)
        self.assertEqual(len(self.db.scalars(select(RelationshipSuggestion)).all()), 2)
        self.assertEqual(get_progress(self.db, "saga-1").status, "cancelled")

    def test_batch_over_time_limit_fails_the_job(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)
        ticks = itertools.count(0, 10)

        result = self._run(job.id, clock=lambda: float(next(ticks)))

        self.assertEqual(result.status, "failed")
        self.assertTrue(result.error_message.startswith("JobFailedError:"))
        progress = get_progress(self.db, "saga-1")
        self.assertEqual(progress.status, "failed")
        self.assertEqual(progress.pairs_processed, 0)
        self.assertEqual(start_batch(self.db, "saga-1", CONFIG).status, "queued")

    def test_claim_is_exclusive(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)

        self.assertTrue(claim_job(self.db, job.id))
        self.assertFalse(claim_job(self.db, job.id))
        self.assertEqual(get_progress(self.db, "saga-1").status, "running")

    def test_unknown_job_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            run_generation_job(987_654, session_factory=self.SessionLocal, config=CONFIG)

    def test_refresh_all_queues_idle_sagas_and_worker_runs_them(self) -> None:
        seed_rebellion(self.db, "saga-2")
        busy = start_batch(self.db, "saga-2", CONFIG)
        claim_job(self.db, busy.id)

        queued = enqueue_refresh_all(self.db, SqlEntityStore(self.db), CONFIG)

        self.assertIsNone(queued["saga-2"])
        self.assertIsNotNone(queued["saga-1"])
        results = run_pending_jobs(session_factory=self.SessionLocal, config=CONFIG, sleep=self.sleeps.append)
        self.assertEqual([(item.saga_id, item.status) for item in results], [("saga-1", "completed")])

    def test_stale_running_job_is_expired_on_next_start(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)
        self.assertTrue(claim_job(self.db, job.id))

        with self.assertRaises(ConflictError):
            start_batch(self.db, "saga-1", CONFIG, now=datetime.now(timezone.utc) + timedelta(seconds=60))
        retry = start_batch(self.db, "saga-1", CONFIG, now=datetime.now(timezone.utc) + timedelta(days=2))

        self.assertEqual(retry.status, "queued")
        self.assertNotEqual(retry.id, job.id)
        self.db.expire_all()
        crashed = self.db.get(SuggestionJob, job.id)
        self.assertEqual(crashed.status, "failed")
        self.assertTrue(crashed.error_message.startswith("Job expired"))
        self.assertIsNotNone(crashed.finished_at)

    def test_unclaimed_queued_job_expires(self) -> None:
        base = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        forgotten = start_batch(self.db, "saga-1", CONFIG, now=base)

        retry = start_batch(self.db, "saga-1", CONFIG, now=base + timedelta(days=2))

        self.assertNotEqual(retry.id, forgotten.id)
        self.db.expire_all()
        self.assertEqual(self.db.get(SuggestionJob, forgotten.id).status, "failed")

    def test_worker_sweep_fails_dead_runner_and_still_runs_old_queued_jobs(self) -> None:
        seed_rebellion(self.db, "saga-2")
        an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        dead = start_batch(self.db, "saga-2", CONFIG)
        claim_job(self.db, dead.id)
        self.db.execute(update(SuggestionJob).where(SuggestionJob.id == dead.id).values(heartbeat_at=an_hour_ago))
        self.db.commit()
        waiting = start_batch(self.db, "saga-1", CONFIG, now=an_hour_ago)

        results = run_pending_jobs(session_factory=self.SessionLocal, config=CONFIG, sleep=self.sleeps.append)

        self.assertEqual([(item.job_id, item.status) for item in results], [(waiting.id, "completed")])
        self.db.expire_all()
        self.assertEqual(self.db.get(SuggestionJob, dead.id).status, "failed")
        self.assertEqual(start_batch(self.db, "saga-2", CONFIG).status, "queued")

    def test_runner_stops_when_its_job_was_expired(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)

        def expire_during_pause(seconds: float) -> None:
            with self.SessionLocal() as other:
                expire_stale_jobs(other, CONFIG, now=datetime.now(timezone.utc) + timedelta(days=1))

        result = self._run(job.id, sleep=expire_during_pause)

        self.assertEqual(result.status, "failed")
        self.assertEqual(result.pairs_processed, 2)
        self.assertTrue(result.error_message.startswith("Job expired"))
        self.assertEqual(len(self.db.scalars(select(RelationshipSuggestion)).all()), 2)

    def test_heartbeat_advances_with_each_batch(self) -> None:
        job = start_batch(self.db, "saga-1", CONFIG)
        heartbeats: list[datetime | None] = []

        def record_heartbeat(seconds: float) -> None:
            with self.SessionLocal() as other:
                heartbeats.append(other.get(SuggestionJob, job.id).heartbeat_at)

        self._run(job.id, sleep=record_heartbeat)

        self.assertEqual(len(heartbeats), 2)
        self.assertTrue(all(value is not None for value in heartbeats))
        self.assertLessEqual(heartbeats[0], heartbeats[1])
        self.assertIsNotNone(get_progress(self.db, "saga-1").heartbeat_at)

    def test_insert_rejects_second_active_job_when_checks_were_stale(self) -> None:
        first = start_batch(self.db, "saga-1", CONFIG)

        with self.assertRaises(ConflictError) as raised:
            queue_job(self.db, "saga-1", CONFIG, now=datetime.now(timezone.utc))

        self.assertIn(str(first.id), str(raised.exception))
        self.assertEqual(len(self.db.scalars(select(SuggestionJob)).all()), 1)

    def test_insert_recounts_window_when_checks_were_stale(self) -> None:
        base = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        for offset in range(5):
            start_batch(self.db, "saga-1", CONFIG, now=base + timedelta(seconds=offset))
            cancel(self.db, "saga-1")

        with self.assertRaises(RateLimitedError) as raised:
            queue_job(self.db, "saga-1", CONFIG, now=base + timedelta(seconds=5))

        self.assertEqual(raised.exception.retry_after_seconds, 3595)
        self.assertEqual(len(self.db.scalars(select(SuggestionJob)).all()), 5)

    def test_statement_bound_only_applies_to_postgresql(self) -> None:
        recorder = _RecordingSession("postgresql")

        self.assertFalse(bound_statement_time(self.db, 5.0))
        self.assertTrue(bound_statement_time(recorder, 2.5))
        self.assertEqual(len(recorder.statements), 1)
        statement, params = recorder.statements[0]
        self.assertIn("statement_timeout", statement)
        self.assertEqual(params, {"value": "2500ms"})

    def test_oracle_timeout_comes_from_engine_config(self) -> None:
        self.db.execute(
            update(SagaEntity)
            .where(SagaEntity.saga_id == "saga-1")
            .values(description="Sworn to the Force and the Rebel Alliance.")
        )
        self.db.commit()
        oracle = _SlowOracle(delay_seconds=0.3)
        quick = replace(CONFIG, oracle_timeout_seconds=0.01)

        result = run_generation_job(
            start_batch(self.db, "saga-1", quick).id,
            session_factory=self.SessionLocal,
            oracle=oracle,
            config=quick,
            sleep=self.sleeps.append,
        )

        self.assertEqual(result.status, "completed")
        self.db.expire_all()
        semantic = self.db.scalars(
            select(SuggestionFeature).where(SuggestionFeature.feature_type == "semantic_similarity")
        ).all()
        self.assertEqual(semantic, [])
        self.assertGreater(oracle.calls, 0)


class ConcurrentStartTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        database_path = os.path.join(self.tempdir.name, "jobs.db")
        self.engine = create_engine(
            f"sqlite+pysqlite:///{database_path}",
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(bind=self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tempdir.cleanup()

    def test_two_racing_starts_queue_one_job(self) -> None:
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        outcomes_lock = threading.Lock()

        def start() -> None:
            with self.SessionLocal() as db:
                barrier.wait()
                try:
                    outcome = start_batch(db, "saga-1", CONFIG).status
                except ConflictError:
                    outcome = "conflict"
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=start) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(sorted(outcomes), ["conflict", "queued"])
        with self.SessionLocal() as db:
            self.assertEqual(len(db.scalars(select(SuggestionJob)).all()), 1)


class _RecordingSession:
    """Stands in for a PostgreSQL session and records executed statements."""

    def __init__(self, dialect_name: str) -> None:
        self._bind = SimpleNamespace(dialect=SimpleNamespace(name=dialect_name))
        self.statements: list[tuple[str, dict | None]] = []

    def get_bind(self):
        return self._bind

    def execute(self, statement, params=None):
        self.statements.append((str(statement), params))


class _SlowOracle:
    def __init__(self, delay_seconds: float) -> None:
        self.delay_seconds = delay_seconds
        self.calls = 0

    def similarity(self, left_text: str, right_text: str) -> float:
        self.calls += 1
        time.sleep(self.delay_seconds)
        return 0.9


if __name__ == "__main__":
    unittest.main()
