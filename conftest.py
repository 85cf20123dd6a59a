"""
Shared fixtures and fakes for the NLU core test suite
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio

from nlu_core.configs.nlu_config import NLUConfig, NLUPresets, QueueConfig
from nlu_core.core.bot import BotHandle, TrainablePredictor
from nlu_core.core.errors import TrainingCanceledError
from nlu_core.core.model_store import InMemoryModelStore
from nlu_core.core.schema import (
    EntityDefinition,
    Health,
    IntentDefinition,
    Prediction,
    TrainingKey,
    TrainingSession,
    TrainingStatus,
)
from nlu_core.core.training_queue import TrainingHandler, TrainingQueue


# ============================================================================
# Definitions
# ============================================================================

def make_intents() -> List[IntentDefinition]:
    return [
        IntentDefinition(
            name="greet",
            utterances={
                "en": ["hello", "hi there", "good morning", "hello friend", "hey you"],
                "fr": ["bonjour", "salut", "bonjour mon ami", "coucou", "bonsoir"],
            },
        ),
        IntentDefinition(
            name="goodbye",
            utterances={
                "en": ["goodbye", "see you later", "bye bye", "farewell", "catch you later"],
                "fr": ["au revoir", "a plus tard", "adieu", "a bientot", "salut a demain"],
            },
        ),
        IntentDefinition(
            name="book_flight",
            contexts=["travel"],
            utterances={
                "en": ["book a flight to paris", "fly me to london", "i need a plane ticket to paris"],
            },
        ),
    ]


def make_entities() -> List[EntityDefinition]:
    return [
        EntityDefinition(
            name="city",
            occurrences=[
                {"name": "Paris", "synonyms": ["paname"]},
                {"name": "London", "synonyms": []},
            ],
        )
    ]


@pytest.fixture
def intents() -> List[IntentDefinition]:
    return make_intents()


@pytest.fixture
def entities() -> List[EntityDefinition]:
    return make_entities()


@pytest.fixture
def fast_config() -> NLUConfig:
    config = NLUPresets.fast_training()
    config.engine.languages = ["en", "fr"]
    return config


# ============================================================================
# Training handler fake
# ============================================================================

class GatedHandler(TrainingHandler):
    """Training handler whose jobs block until released per key."""

    def __init__(self):
        self.started: List[TrainingKey] = []
        self.canceled: List[str] = []
        self.failures: Dict[TrainingKey, Exception] = {}
        self.max_concurrent = 0
        self._running = 0
        self._gates: Dict[TrainingKey, asyncio.Event] = {}

    def _gate(self, key: TrainingKey) -> asyncio.Event:
        return self._gates.setdefault(key, asyncio.Event())

    def release(self, key: TrainingKey) -> None:
        self._gate(key).set()

    async def train(self, session: TrainingSession, progress_callback) -> None:
        self.started.append(session.key)
        self._running += 1
        self.max_concurrent = max(self.max_concurrent, self._running)
        try:
            await self._gate(session.key).wait()
            if session.id in self.canceled:
                raise TrainingCanceledError(session.id)
            progress_callback(0.5)
            if session.key in self.failures:
                raise self.failures[session.key]
        finally:
            self._running -= 1
            self._gates.pop(session.key, None)

    async def cancel(self, session: TrainingSession) -> None:
        self.canceled.append(session.id)
        self.release(session.key)


@pytest.fixture
def handler() -> GatedHandler:
    return GatedHandler()


@pytest_asyncio.fixture
async def queue(handler):
    q = TrainingQueue(handler, QueueConfig(max_workers=2, teardown_timeout=2.0))
    await q.initialize()
    yield q
    await q.teardown()


@pytest.fixture
def wait_for_status():
    async def _wait(q: TrainingQueue, key: TrainingKey, *statuses: TrainingStatus, timeout: float = 5.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            session = await q.get_training(key)
            if session.status in statuses:
                return session
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError(f"{key} stuck in {session.status.value}, expected {statuses}")
            await asyncio.sleep(0.01)

    return _wait


# ============================================================================
# Orchestrator fakes
# ============================================================================

class FakePredictor(TrainablePredictor):
    def __init__(self, load_result: bool = True, mount_error: Optional[Exception] = None):
        self.load_result = load_result
        self.mount_error = mount_error
        self.loaded: List[str] = []
        self.trained: List[str] = []
        self.mounted = False
        self.unmounted = False

    async def load(self, model_id: str) -> bool:
        self.loaded.append(model_id)
        return self.load_result

    async def mount(self) -> None:
        if self.mount_error is not None:
            raise self.mount_error
        self.mounted = True

    async def unmount(self) -> None:
        self.unmounted = True

    async def predict(self, text: str, contexts: Optional[Sequence[str]] = None, language: Optional[str] = None):
        return Prediction(language=language or "en", detected_language=language or "en", ms=0.0)

    async def train(self, language: str, session_id: str, progress_callback=None) -> None:
        self.trained.append(language)

    async def cancel_training(self, session_id: str) -> None:
        pass


class FakeVersioning:
    """Versioning service with settable latest ids and direct dirty emission."""

    def __init__(self, latest: Dict[str, str]):
        self.latest = dict(latest)
        self.failing: set = set()
        self.handlers: Dict[str, Callable] = {}
        self._next_id = 0

    async def get_latest_model_id(self, language: str) -> str:
        if language in self.failing:
            raise RuntimeError(f"versioning unavailable for {language}")
        return self.latest[language]

    def listen_for_dirty_models(self, handler) -> str:
        self._next_id += 1
        subscription_id = f"sub-{self._next_id}"
        self.handlers[subscription_id] = handler
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.handlers.pop(subscription_id, None) is not None

    async def emit(self, language: str) -> None:
        for handler in list(self.handlers.values()):
            await handler(language)


class FakeFactory:
    def __init__(self, handle: BotHandle, error: Optional[Exception] = None):
        self.handle = handle
        self.error = error
        self.made = 0

    async def make_bot(self, bot_config) -> BotHandle:
        self.made += 1
        if self.error is not None:
            raise self.error
        return self.handle

    def get_health(self) -> Health:
        return Health(is_enabled=True, valid_providers_count=1, valid_languages=["en", "fr"])


@pytest.fixture
def predictor() -> FakePredictor:
    return FakePredictor()


@pytest.fixture
def versioning() -> FakeVersioning:
    return FakeVersioning({"en": "m-en", "fr": "m-fr"})


@pytest.fixture
def model_store() -> InMemoryModelStore:
    return InMemoryModelStore()


@pytest.fixture
def bot_handle(predictor, versioning, model_store) -> BotHandle:
    return BotHandle(predictor=predictor, versioning_service=versioning, model_store=model_store)
