"""
Training Queue - At-most-one-in-flight training per (bot, language)
====================================================================

Single authority for whether a (bot, language) pair needs training, is
queued, or is training.

State machine:
    needs-training -> queued -> training -> done | errored | canceled
    queued -> canceled
    needs-training -> canceled

Terminal sessions never change; a later `queue_training` creates a new
session with a fresh id. Pending keys are dispatched FIFO to at most
`max_workers` concurrent jobs.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Tuple

from nlu_core.configs.nlu_config import QueueConfig
from nlu_core.core.errors import QueueNotInitializedError, TrainingCanceledError
from nlu_core.core.schema import TrainingKey, TrainingSession, TrainingStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
TrainingListener = Callable[[TrainingSession], None]


class TrainingHandler(ABC):
    """Executes the actual work of a session."""

    @abstractmethod
    async def train(self, session: TrainingSession, progress_callback: ProgressCallback) -> None:
        """Run training. Raise TrainingCanceledError if canceled."""
        ...

    @abstractmethod
    async def cancel(self, session: TrainingSession) -> None:
        """Signal cancellation of a running session (best-effort)."""
        ...


class TrainingQueue:
    """
    Usage:
        queue = TrainingQueue(handler, QueueConfig(max_workers=2))
        await queue.initialize()

        session = await queue.queue_training(("my-bot", "en"))
        await queue.join()

        await queue.teardown()
    """

    def __init__(self, handler: TrainingHandler, config: Optional[QueueConfig] = None):
        self.handler = handler
        self.config = config or QueueConfig()

        self._sessions: Dict[TrainingKey, TrainingSession] = {}
        self._pending: Deque[TrainingKey] = deque()
        self._running: Dict[str, Tuple[TrainingSession, asyncio.Task]] = {}  # session_id -> job
        self._listeners: List[TrainingListener] = []

        self._lock = asyncio.Lock()
        self._idle = asyncio.Event()
        self._idle.set()
        self._initialized = False
        self._closing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        self._closing = False
        self._initialized = True
        logger.info(f"TrainingQueue initialized (max_workers={self.config.max_workers})")

    async def teardown(self) -> None:
        """Cancel pending sessions and stop in-flight ones."""
        if not self._initialized:
            return
        self._closing = True
        try:
            async with self._lock:
                while self._pending:
                    self._set_status(self._sessions[self._pending.popleft()], TrainingStatus.CANCELED)
                in_flight = [s for s, _ in self._running.values() if not s.status.is_terminal]
                running = [s for s in in_flight if s.status == TrainingStatus.TRAINING]
                for session in in_flight:
                    self._set_status(session, TrainingStatus.CANCELED)

            for session in running:
                try:
                    await self.handler.cancel(session.snapshot())
                except Exception as e:
                    logger.error(f"Failed to cancel {session.bot_id}/{session.language}: {e}")

            tasks = [task for _, task in self._running.values()]
            if tasks:
                done, still_running = await asyncio.wait(tasks, timeout=self.config.teardown_timeout)
                for task in still_running:
                    task.cancel()
                if still_running:
                    await asyncio.gather(*still_running, return_exceptions=True)
        finally:
            self._running.clear()
            self._idle.set()
            self._initialized = False
            logger.info("TrainingQueue torn down")

    def ensure_accepting(self) -> None:
        """Raise QueueNotInitializedError unless new work can be accepted."""
        if not self._initialized or self._closing:
            raise QueueNotInitializedError()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: TrainingListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TrainingListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_status(self, session: TrainingSession, status: TrainingStatus) -> None:
        session.status = status
        if status.is_terminal:
            session.finished_at = datetime.now()
        snapshot = session.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Training listener failed: {e}")

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def _new_session(self, key: TrainingKey) -> TrainingSession:
        bot_id, language = key
        session = TrainingSession(bot_id=bot_id, language=language, id=uuid.uuid4().hex)
        self._sessions[key] = session
        return session

    async def needs_training(self, key: TrainingKey) -> TrainingSession:
        """Mark `key` stale without starting work."""
        self.ensure_accepting()
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None and not session.status.is_terminal:
                return session.snapshot()
            session = self._new_session(key)
            self._set_status(session, TrainingStatus.NEEDS_TRAINING)
            logger.info(f"[{key[0]}] {key[1]} model needs training")
            return session.snapshot()

    async def queue_training(self, key: TrainingKey) -> TrainingSession:
        """Idempotent enqueue: an active session for `key` is reused."""
        self.ensure_accepting()
        async with self._lock:
            session = self._sessions.get(key)
            if session is not None and session.status.is_active:
                return session.snapshot()
            if session is None or session.status.is_terminal:
                session = self._new_session(key)
            session.progress = 0.0
            self._set_status(session, TrainingStatus.QUEUED)
            self._pending.append(key)
            self._idle.clear()
            logger.info(f"[{key[0]}] {key[1]} training queued ({session.id})")
            self._dispatch()
            return session.snapshot()

    async def cancel_training(self, key: TrainingKey) -> TrainingSession:
        self.ensure_accepting()
        async with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return self._synthetic(key)
            if session.status.is_terminal:
                return session.snapshot()

            was_training = session.status == TrainingStatus.TRAINING
            if session.status == TrainingStatus.QUEUED and key in self._pending:
                self._pending.remove(key)
            self._set_status(session, TrainingStatus.CANCELED)
            self._update_idle()
            logger.info(f"[{key[0]}] {key[1]} training canceled ({session.id})")

        if was_training:
            await self.handler.cancel(session.snapshot())
        return session.snapshot()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @staticmethod
    def _synthetic(key: TrainingKey) -> TrainingSession:
        return TrainingSession(bot_id=key[0], language=key[1], status=TrainingStatus.NONE)

    async def get_training(self, key: TrainingKey) -> TrainingSession:
        session = self._sessions.get(key)
        return session.snapshot() if session else self._synthetic(key)

    async def get_all_trainings(self) -> List[TrainingSession]:
        return [s.snapshot() for s in self._sessions.values()]

    async def join(self) -> None:
        """Wait until nothing is pending or running."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _update_idle(self) -> None:
        if not self._pending and not self._running:
            self._idle.set()

    def _dispatch(self) -> None:
        """Start pending jobs while worker slots are free. Never suspends."""
        while self._pending and len(self._running) < self.config.max_workers and not self._closing:
            key = self._pending.popleft()
            session = self._sessions[key]
            task = asyncio.get_running_loop().create_task(self._run(session))
            self._running[session.id] = (session, task)
        self._update_idle()

    async def _run(self, session: TrainingSession) -> None:
        key = session.key
        async with self._lock:
            if session.status != TrainingStatus.QUEUED:
                self._running.pop(session.id, None)
                self._dispatch()
                return
            session.started_at = datetime.now()
            self._set_status(session, TrainingStatus.TRAINING)

        def _progress(value: float) -> None:
            session.progress = max(0.0, min(1.0, value))

        status = TrainingStatus.DONE
        try:
            await self.handler.train(session.snapshot(), _progress)
        except TrainingCanceledError:
            status = TrainingStatus.CANCELED
        except asyncio.CancelledError:
            status = TrainingStatus.CANCELED
            raise
        except Exception as e:
            status = TrainingStatus.ERRORED
            session.error = str(e)
            logger.exception(f"[{key[0]}] {key[1]} training errored ({session.id})")
        finally:
            self._running.pop(session.id, None)
            if session.status == TrainingStatus.TRAINING:
                if status == TrainingStatus.DONE:
                    session.progress = 1.0
                self._set_status(session, status)
                logger.info(f"[{key[0]}] {key[1]} training {status.value} ({session.id})")
            if not self._closing:
                self._dispatch()
            else:
                self._update_idle()
