"""
Pipeline orchestration: one state machine per run.

    pending -> resolving -> enriching -> generating -> scoring -> curating -> explaining -> complete
                          (any non-terminal state) -> failed

PipelineRun owns a single run's PipelineState behind a lock and persists it
on every transition. PipelineManager is the process-wide entry point: it
starts runs on background threads, serves status reads from the state store,
handles cancellation and finalizes finished runs through the run record,
credit ledger and archive collaborators.
"""
from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from seedmix.credits import CreditLedger, LoggingCreditLedger, credit_cost
from seedmix.errors import (
    CancelledError,
    PipelineError,
    RunAlreadyStartedError,
    StageTimeoutError,
)
from seedmix.logging_utils import propagate_run_id, set_run_id, stage_timer
from seedmix.models import (
    STATUS_PROGRESS,
    EnrichedTrack,
    PipelineErrorInfo,
    PipelineState,
    PipelineStatus,
    PlaylistTrack,
    ScoredTrack,
    SeedTrackInput,
    next_status,
)
from seedmix.pipeline.candidate_generator import CandidateGenerator
from seedmix.pipeline.curator import curate
from seedmix.pipeline.enricher import TrackEnricher
from seedmix.pipeline.explainer import Explainer
from seedmix.pipeline.resolver import TrackResolver
from seedmix.pipeline.scoring import SimilarityScorer
from seedmix.pipeline.state_store import ArchiveStore, RunRecordStore, StateStore
from seedmix.response_cache import ResponseCache

logger = logging.getLogger(__name__)

DEFAULT_STAGE_TIMEOUT = 120.0
INTERRUPTED = "INTERRUPTED"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PipelineServices:
    """Stage collaborators, wired once per process."""
    resolver: TrackResolver
    enricher: TrackEnricher
    generator: CandidateGenerator
    scorer: SimilarityScorer
    explainer: Explainer
    curator: Callable[[Sequence[ScoredTrack], int], List[PlaylistTrack]] = field(default=curate)
    cache: Optional[ResponseCache] = None


class PipelineRun:
    """
    Single-writer owner of one run's state.

    Every mutation happens under the lock and is persisted before the lock is
    released, so a status read never sees state that was not saved.
    """

    def __init__(
        self,
        state: PipelineState,
        services: PipelineServices,
        state_store: StateStore,
        stage_timeout: float = DEFAULT_STAGE_TIMEOUT,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self._state = state
        self.services = services
        self.state_store = state_store
        self.stage_timeout = stage_timeout
        self._clock_ms = clock_ms
        self._lock = threading.Lock()
        self._finalized = False

    @property
    def run_id(self) -> str:
        return self._state.run_id

    def snapshot(self) -> PipelineState:
        """Copy of the current state, safe to hand to other threads."""
        with self._lock:
            state = copy.copy(self._state)
            state.candidate_pool = list(state.candidate_pool)
            state.scored_candidates = list(state.scored_candidates)
            state.final_playlist = list(state.final_playlist)
            return state

    def is_terminal(self) -> bool:
        with self._lock:
            return self._state.status.is_terminal

    def mark_finalized(self) -> bool:
        """True exactly once, for whichever thread finalizes the run first."""
        with self._lock:
            if self._finalized or not self._state.status.is_terminal:
                return False
            self._finalized = True
            return True

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        self.state_store.save(self._state)

    def _transition(self, status: PipelineStatus, **updates: Any) -> None:
        """Move to the immediate successor state, applying stage output atomically."""
        with self._lock:
            current = self._state.status
            if current == PipelineStatus.FAILED:
                raise CancelledError(f"Run {self.run_id} is no longer active")
            if next_status(current) != status:
                raise PipelineError(f"Illegal transition {current.value} -> {status.value}")

            for name, value in updates.items():
                setattr(self._state, name, value)
            self._state.status = status
            self._state.progress = max(self._state.progress, STATUS_PROGRESS[status])
            if status == PipelineStatus.COMPLETE:
                self._state.completed_at = self._clock_ms()
            self._persist()
        logger.debug(f"Run {self.run_id} -> {status.value} ({STATUS_PROGRESS[status]}%)")

    def fail(self, error: PipelineError) -> bool:
        """Record a typed failure at the current stage; False if already terminal."""
        with self._lock:
            if self._state.status.is_terminal:
                return False
            stage = self._state.status
            self._state.error = PipelineErrorInfo(
                code=error.code,
                message=error.message,
                stage=stage.value,
                retryable=error.retryable,
            )
            self._state.status = PipelineStatus.FAILED
            self._state.completed_at = self._clock_ms()
            self._persist()
        logger.warning(
            f"Run {self.run_id} failed during {stage.value}: {error.code} "
            f"(retryable={error.retryable}) {error.message}"
        )
        return True

    def cancel(self) -> bool:
        """Best-effort cancellation; an in-flight stage result is discarded later."""
        return self.fail(CancelledError("Run cancelled"))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run_stage(self, name: str, fn: Callable[[], Any]) -> Any:
        """Run fn with the stage timeout; discard the result if the run was cancelled meanwhile."""
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{name}")
        try:
            with stage_timer(f"Stage '{name}'", logger):
                future = executor.submit(propagate_run_id(fn))
                try:
                    result = future.result(timeout=self.stage_timeout)
                except FutureTimeoutError:
                    raise StageTimeoutError(
                        f"Stage '{name}' exceeded {self.stage_timeout:g}s"
                    ) from None
        finally:
            # A timed-out call keeps running in the background; its result is dropped
            executor.shutdown(wait=False)

        if self.is_terminal():
            raise CancelledError(f"Run {self.run_id} was cancelled during {name}")
        return result

    def execute(self) -> PipelineState:
        """Drive every stage in order; returns the final state."""
        set_run_id(self.run_id)
        seed_input = self._state.seed_track
        services = self.services
        try:
            self._transition(PipelineStatus.RESOLVING)
            resolved = self._run_stage("resolve", lambda: services.resolver.resolve(seed_input.query))

            self._transition(PipelineStatus.ENRICHING, resolved_track=resolved)
            seed: EnrichedTrack = self._run_stage("enrich", lambda: services.enricher.enrich(resolved))

            self._transition(PipelineStatus.GENERATING, candidate_pool=[seed])
            pool = self._run_stage(
                "generate", lambda: services.generator.generate(seed, seed_input.playlist_size)
            )

            self._transition(PipelineStatus.SCORING, candidate_pool=pool)
            scored = self._run_stage(
                "score", lambda: services.scorer.score(pool[0], pool[1:], seed_input.preferences)
            )

            self._transition(PipelineStatus.CURATING, scored_candidates=scored)
            playlist = self._run_stage(
                "curate", lambda: services.curator(scored, seed_input.playlist_size)
            )

            self._transition(PipelineStatus.EXPLAINING, final_playlist=playlist)
            explained = self._run_stage("explain", lambda: services.explainer.explain(seed, playlist))

            self._transition(PipelineStatus.COMPLETE, final_playlist=explained)
            logger.info(f"Run {self.run_id} complete: {len(explained)} tracks")
        except CancelledError:
            logger.info(f"Run {self.run_id} stopped after cancellation")
        except PipelineError as e:
            self.fail(e)
        except Exception as e:
            logger.exception(f"Unexpected error in run {self.run_id}")
            self.fail(PipelineError(f"{type(e).__name__}: {e}"))
        finally:
            set_run_id(None)
        return self.snapshot()


class PipelineManager:
    """
    Process-wide run coordinator.

    Usage:
        manager = PipelineManager(services, StateStore(path), RunRecordStore(path))
        manager.recover_interrupted()
        state = manager.start_run(SeedTrackInput("Paranoid Android by Radiohead", 30), user_id="u1")
        for update in manager.stream_status(state.run_id):
            ...
    """

    def __init__(
        self,
        services: PipelineServices,
        state_store: StateStore,
        run_store: RunRecordStore,
        archive: Optional[ArchiveStore] = None,
        ledger: Optional[CreditLedger] = None,
        stage_timeout: float = DEFAULT_STAGE_TIMEOUT,
        poll_interval: float = 1.0,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.services = services
        self.state_store = state_store
        self.run_store = run_store
        self.archive = archive
        self.ledger = ledger or LoggingCreditLedger()
        self.stage_timeout = stage_timeout
        self.poll_interval = poll_interval
        self._clock_ms = clock_ms
        self._lock = threading.Lock()
        self._runs: Dict[str, PipelineRun] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._background: List[threading.Thread] = []

    # Public API ---------------------------------------------------------

    def start_run(self, seed: SeedTrackInput, user_id: str, run_id: Optional[str] = None) -> PipelineState:
        """
        Validate input, persist a pending run and launch it on a daemon thread.

        Raises:
            ValidationError: malformed input
            RunAlreadyStartedError: run_id already known
        """
        seed.validate()
        run_id = run_id or str(uuid.uuid4())
        credits = credit_cost(seed.playlist_size)

        with self._lock:
            if run_id in self._runs or self.state_store.load(run_id) is not None:
                raise RunAlreadyStartedError(f"Run {run_id} has already been started")

            self.run_store.create(run_id, user_id, seed, credits)
            state = PipelineState(
                run_id=run_id,
                user_id=user_id,
                seed_track=seed,
                status=PipelineStatus.PENDING,
                progress=STATUS_PROGRESS[PipelineStatus.PENDING],
                started_at=self._clock_ms(),
            )
            self.state_store.save(state)
            run = PipelineRun(state, self.services, self.state_store,
                              stage_timeout=self.stage_timeout, clock_ms=self._clock_ms)
            self._runs[run_id] = run

            thread = threading.Thread(
                target=self._execute, args=(run,), name=f"run-{run_id[:8]}", daemon=True
            )
            self._threads[run_id] = thread
            snapshot = run.snapshot()

        self._ledger_call("reserve", user_id, run_id, credits)
        logger.info(
            f"Starting run {run_id}: '{seed.query}' ({seed.playlist_size} tracks, {credits} credits)"
        )
        thread.start()
        return snapshot

    def get_state(self, run_id: str) -> Optional[PipelineState]:
        """Last persisted state of a run."""
        return self.state_store.load(run_id)

    def get_status(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Poll-once status view, or None for an unknown run."""
        state = self.state_store.load(run_id)
        return state.status_view() if state else None

    def get_archived(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Archived final payload of a run, or None when it was never archived."""
        if self.archive is None:
            return None
        record = self.run_store.get(run_id)
        if record is None or not record["archiveKey"]:
            return None
        return self.archive.get(record["archiveKey"])

    def stream_status(
        self,
        run_id: str,
        interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[Dict[str, Any]]:
        """Yield the status view every interval until the run reaches a terminal state."""
        interval = self.poll_interval if interval is None else interval
        while True:
            view = self.get_status(run_id)
            if view is None:
                return
            yield view
            if PipelineStatus(view["status"]).is_terminal:
                return
            sleep(interval)

    def cancel(self, run_id: str) -> bool:
        """
        Cancel a run. Returns False when the run is unknown or already finished.
        """
        with self._lock:
            run = self._runs.get(run_id)

        if run is not None:
            if not run.cancel():
                return False
            self._finalize(run)
            return True

        # Not live in this process: a persisted non-terminal state can still be cancelled
        state = self.state_store.load(run_id)
        if state is None or state.status.is_terminal:
            return False
        orphan = PipelineRun(state, self.services, self.state_store, clock_ms=self._clock_ms)
        orphan.cancel()
        self._finalize(orphan)
        return True

    def recover_interrupted(self) -> int:
        """
        Mark persisted non-terminal runs with no live worker as failed.

        Called at startup so status reporting stays accurate after a restart.
        Returns the number of runs marked.
        """
        count = 0
        for state in self.state_store.list_unfinished():
            with self._lock:
                if state.run_id in self._runs:
                    continue
            orphan = PipelineRun(state, self.services, self.state_store, clock_ms=self._clock_ms)
            if orphan.fail(PipelineError(
                "Interrupted - service restarted", code=INTERRUPTED, retryable=True
            )):
                self._finalize(orphan)
                count += 1
        if count:
            logger.warning(f"Marked {count} interrupted run(s) as failed")
        return count

    def wait(self, run_id: str, timeout: Optional[float] = None) -> bool:
        """Join a run's worker thread; True if it finished within timeout."""
        with self._lock:
            thread = self._threads.get(run_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def wait_for_background(self, timeout: Optional[float] = None) -> None:
        """Join detached side-effect tasks (archive writes)."""
        with self._lock:
            pending = list(self._background)
        for thread in pending:
            thread.join(timeout)

    # Internals ----------------------------------------------------------

    def _execute(self, run: PipelineRun) -> None:
        try:
            run.execute()
        finally:
            self._finalize(run)
            with self._lock:
                self._runs.pop(run.run_id, None)

    def _finalize(self, run: PipelineRun) -> None:
        """Write the run record, settle credits and archive the payload (once per run)."""
        if not run.mark_finalized():
            return
        state = run.snapshot()
        completed_at = state.completed_at or self._clock_ms()
        credits = credit_cost(state.seed_track.playlist_size)
        succeeded = state.status == PipelineStatus.COMPLETE

        try:
            self.run_store.finalize(
                state.run_id,
                status=state.status,
                resolved_track=state.resolved_track,
                playlist=state.final_playlist,
                processing_time_ms=max(0, completed_at - state.started_at),
                completed_at_ms=completed_at,
                error_message=state.error.message if state.error else None,
                credits_used=credits if succeeded else 0,
            )
        except Exception:
            logger.exception(f"Failed to finalize run record {state.run_id}")

        self._ledger_call("commit" if succeeded else "refund", state.user_id, state.run_id, credits)

        if self.archive is not None:
            thread = threading.Thread(
                target=self._archive, args=(state, completed_at),
                name=f"archive-{state.run_id[:8]}", daemon=True,
            )
            with self._lock:
                self._background = [t for t in self._background if t.is_alive()]
                self._background.append(thread)
            thread.start()

    def _archive(self, state: PipelineState, completed_at: int) -> None:
        """Detached task: failures are logged and never affect the run."""
        try:
            key = ArchiveStore.key_for(state.run_id, completed_at)
            self.archive.put(key, state.to_dict())
            self.run_store.set_archive_key(state.run_id, key)
        except Exception:
            logger.exception(f"Archiving run {state.run_id} failed")

    def _ledger_call(self, action: str, user_id: str, run_id: str, amount: int) -> None:
        try:
            getattr(self.ledger, action)(user_id, run_id, amount)
        except Exception:
            logger.exception(f"Credit {action} failed for run {run_id}")
