"""
Bots - Predictor contract and its engine-backed implementation
==============================================================

A mounted bot is exposed to the orchestrator as a `Predictor`. The default
`Bot` wraps one Engine, reads its training data from a DefinitionsService
and persists finished models into a ModelStore.

`BotFactory` builds the three collaborators for a BotConfig, and
`BotTrainingHandler` lets the TrainingQueue drive training through whatever
bot is registered when a job starts.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from nlu_core.configs.nlu_config import NLUConfig
from nlu_core.core.bot_registry import BotRegistry
from nlu_core.core.definitions import DefinitionsRepository, DefinitionsService
from nlu_core.core.engine import Engine, TrainingOptions
from nlu_core.core.errors import BotNotMountedError, ModelLoadError
from nlu_core.core.model_store import ModelStore, create_model_store
from nlu_core.core.schema import BotConfig, Health, Prediction, TrainingSession
from nlu_core.core.training_queue import ProgressCallback, TrainingHandler

logger = logging.getLogger(__name__)

ModelStoreFactory = Callable[[str], ModelStore]


class Predictor(ABC):
    """Runtime face of a mounted bot."""

    @abstractmethod
    async def load(self, model_id: str) -> bool:
        """Load a stored model. False when it is missing or unusable."""
        ...

    @abstractmethod
    async def mount(self) -> None:
        ...

    @abstractmethod
    async def unmount(self) -> None:
        ...

    @abstractmethod
    async def predict(
        self,
        text: str,
        contexts: Optional[Sequence[str]] = None,
        language: Optional[str] = None,
    ) -> Prediction:
        ...


class TrainablePredictor(Predictor):
    """A predictor the training queue can drive."""

    @abstractmethod
    async def train(
        self,
        language: str,
        session_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Optional[str]:
        """Train one language. Returns the id the model was saved under, if any."""
        ...

    @abstractmethod
    async def cancel_training(self, session_id: str) -> None:
        ...


class Bot(TrainablePredictor):
    """
    Engine-backed predictor for one bot.

    Usage:
        bot = Bot("my-bot", ["en"], engine, definitions_service, model_store)
        await bot.train("en", session_id)
        prediction = await bot.predict("book a flight")
    """

    def __init__(
        self,
        bot_id: str,
        languages: Sequence[str],
        engine: Engine,
        definitions: DefinitionsService,
        model_store: ModelStore,
    ):
        self.bot_id = bot_id
        self.languages: List[str] = list(languages)
        self.engine = engine
        self.definitions = definitions
        self.model_store = model_store
        self.mounted = False

    async def load(self, model_id: str) -> bool:
        model = await self.model_store.get_model(model_id)
        if model is None:
            logger.warning(f"[{self.bot_id}] Model {model_id} not found in store")
            return False
        return await self.engine.load_model(model)

    async def mount(self) -> None:
        self.mounted = True
        logger.info(f"[{self.bot_id}] Mounted (languages: {', '.join(self.languages)})")

    async def unmount(self) -> None:
        self.mounted = False
        self.engine.dispose()
        logger.info(f"[{self.bot_id}] Unmounted")

    async def train(
        self,
        language: str,
        session_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Optional[str]:
        intents = self.definitions.get_intents(language)
        entities = self.definitions.get_entities()
        model = await self.engine.train(
            session_id,
            intents,
            entities,
            language,
            TrainingOptions(progress_callback=progress_callback),
        )
        if model is None:
            logger.info(f"[{self.bot_id}] No {language} intents, nothing to train")
            return None
        model_id = self.definitions.model_id_for(model.hash, language)
        await self.model_store.save_model(model_id, model)
        logger.info(f"[{self.bot_id}] Saved {language} model {model_id}")
        return model_id

    async def cancel_training(self, session_id: str) -> None:
        await self.engine.cancel_training(session_id)

    async def predict(
        self,
        text: str,
        contexts: Optional[Sequence[str]] = None,
        language: Optional[str] = None,
    ) -> Prediction:
        detected = language
        if language is None:
            detected = await self.engine.detect_language(text)
            language = detected if detected in self.languages else self.languages[0]
        prediction = self.engine.predict(text, list(contexts or []), language)
        prediction.detected_language = detected
        return prediction


@dataclass
class BotHandle:
    """What the orchestrator needs to mount a bot."""
    predictor: Predictor
    versioning_service: DefinitionsService
    model_store: ModelStore


class BotFactory:
    """Builds engine-backed bots from the shared configuration."""

    def __init__(
        self,
        config: NLUConfig,
        definitions: DefinitionsRepository,
        model_store_factory: Optional[ModelStoreFactory] = None,
    ):
        self.config = config
        self.definitions = definitions
        self._model_store_factory = model_store_factory
        self._stores: Dict[str, ModelStore] = {}

    def _store_for(self, bot_id: str) -> ModelStore:
        # One store per bot id, reused across remounts
        store = self._stores.get(bot_id)
        if store is None:
            if self._model_store_factory is not None:
                store = self._model_store_factory(bot_id)
            else:
                store = create_model_store(self.config.storage, bot_id, self.config.resolve_models_dir())
            self._stores[bot_id] = store
        return store

    async def make_bot(self, bot_config: BotConfig) -> BotHandle:
        if not bot_config.languages:
            raise ValueError(f"Bot {bot_config.id} has no languages")
        engine = Engine(bot_config.id, self.config.engine)
        service = DefinitionsService(
            bot_config.id,
            self.definitions,
            engine.compute_model_hash,
            self.config.specification_hash(),
        )
        store = self._store_for(bot_config.id)
        bot = Bot(bot_config.id, bot_config.languages, engine, service, store)
        return BotHandle(predictor=bot, versioning_service=service, model_store=store)

    def get_health(self) -> Health:
        return Engine.get_health(self.config.engine)


class BotTrainingHandler(TrainingHandler):
    """
    Runs queue jobs against the bot registered at job start.

    If the bot was remounted while the job ran, the finished model is loaded
    into the predictor that is registered now.
    """

    def __init__(self, registry: BotRegistry):
        self.registry = registry
        self._bots_by_session: Dict[str, TrainablePredictor] = {}

    async def train(self, session: TrainingSession, progress_callback: ProgressCallback) -> None:
        bot = self.registry.get_bot(session.bot_id)
        if not isinstance(bot, TrainablePredictor):
            logger.warning(f"[{session.bot_id}] Bot not mounted at training start ({session.id})")
            raise BotNotMountedError(session.bot_id)

        self._bots_by_session[session.id] = bot
        try:
            model_id = await bot.train(session.language, session.id, progress_callback)
        finally:
            self._bots_by_session.pop(session.id, None)

        current = self.registry.get_bot(session.bot_id)
        if model_id is None or current is None or current is bot:
            return
        # Remounted mid-training: the new predictor still needs this model
        if await current.load(model_id):
            logger.info(f"[{session.bot_id}] Loaded {session.language} model into remounted bot")
        elif self.registry.get_bot(session.bot_id) is current:
            raise ModelLoadError(f"Remounted bot {session.bot_id} could not load {model_id}")

    async def cancel(self, session: TrainingSession) -> None:
        bot = self._bots_by_session.get(session.id)
        if bot is not None:
            await bot.cancel_training(session.id)
