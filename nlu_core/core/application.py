"""
NLU Application - Bot lifecycle orchestrator
============================================

Coordinates mounting, dirty-model handling and training:

    mount_bot
      -> BotFactory.make_bot             (predictor, versioning, model store)
      -> subscribe to dirty models
      -> per language: load stored model | queue training | mark needs-training
      -> predictor.mount() -> register

Mount, unmount and dirty-model handling of one bot id are serialized by a
per-bot asyncio.Lock, so a bot is either fully mounted or fully absent and
a dirty notification arriving mid-mount is handled once the mount settles.
Different bot ids never contend.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from nlu_core.configs.nlu_config import NLUConfig
from nlu_core.core.bot import BotFactory, BotTrainingHandler, ModelStoreFactory, Predictor
from nlu_core.core.bot_registry import BotRegistry
from nlu_core.core.definitions import DefinitionsRepository, DefinitionsService
from nlu_core.core.errors import BotAlreadyMountedError, BotNotMountedError
from nlu_core.core.model_store import ModelStore
from nlu_core.core.schema import BotConfig, Health, TrainingSession
from nlu_core.core.training_queue import TrainingQueue

logger = logging.getLogger(__name__)


@dataclass
class _BotLock:
    lock: asyncio.Lock
    users: int = 0


class NLUApplication:
    """
    Usage:
        app = create_application(NLUPresets.default(), definitions)
        await app.initialize()

        await app.mount_bot(BotConfig(id="my-bot", languages=("en",)))
        await app.training_queue.join()
        prediction = await app.get_bot("my-bot").predict("hello")

        await app.teardown()
    """

    def __init__(self, training_queue: TrainingQueue, bot_registry: BotRegistry, bot_factory: BotFactory):
        self.training_queue = training_queue
        self.bot_registry = bot_registry
        self.bot_factory = bot_factory

        self._locks: Dict[str, _BotLock] = {}
        self._subscriptions: Dict[str, Tuple[DefinitionsService, str]] = {}

    @asynccontextmanager
    async def _bot_lock(self, bot_id: str) -> AsyncIterator[None]:
        """Per-bot lock, dropped once no caller holds or waits on it."""
        entry = self._locks.get(bot_id)
        if entry is None:
            entry = self._locks[bot_id] = _BotLock(asyncio.Lock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[bot_id]

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        await self.training_queue.initialize()
        logger.info("NLU application initialized")

    async def teardown(self) -> None:
        try:
            await self.training_queue.teardown()
        finally:
            for bot_id in sorted(self.bot_registry.get_ids()):
                try:
                    await self.unmount_bot(bot_id)
                except Exception as e:
                    logger.error(f"[{bot_id}] Failed to unmount during teardown: {e}")
            logger.info("NLU application torn down")

    # ========================================================================
    # Read-only pass-throughs
    # ========================================================================

    def get_health(self) -> Health:
        return self.bot_factory.get_health()

    async def get_training(self, bot_id: str, language: str) -> TrainingSession:
        return await self.training_queue.get_training((bot_id, language))

    async def get_all_trainings(self) -> List[TrainingSession]:
        return await self.training_queue.get_all_trainings()

    def has_bot(self, bot_id: str) -> bool:
        return self.bot_registry.has_bot(bot_id)

    def get_bot(self, bot_id: str) -> Predictor:
        predictor = self.bot_registry.get_bot(bot_id)
        if predictor is None:
            raise BotNotMountedError(bot_id)
        return predictor

    async def get_status(self) -> Dict[str, Any]:
        return {
            "bots": sorted(self.bot_registry.get_ids()),
            "trainings": [s.to_dict() for s in await self.get_all_trainings()],
            "health": self.get_health().to_dict(),
        }

    # ========================================================================
    # Mounting
    # ========================================================================

    async def mount_bot(self, bot_config: BotConfig) -> None:
        bot_id = bot_config.id
        async with self._bot_lock(bot_id):
            if self.bot_registry.has_bot(bot_id):
                raise BotAlreadyMountedError(bot_id)
            self.training_queue.ensure_accepting()

            handle = await self.bot_factory.make_bot(bot_config)
            predictor = handle.predictor
            service = handle.versioning_service
            languages = set(bot_config.languages)

            async def on_dirty_model(language: str) -> None:
                if language not in languages:
                    logger.debug(f"[{bot_id}] Ignoring dirty model for unconfigured language {language}")
                    return
                await self._handle_dirty_model(bot_id, predictor, service, handle.model_store, language)

            subscription_id = service.listen_for_dirty_models(on_dirty_model)

            to_queue: List[str] = []
            to_mark: List[str] = []
            try:
                for language in bot_config.languages:
                    try:
                        model_id = await service.get_latest_model_id(language)
                        if await handle.model_store.has_model(model_id):
                            if await predictor.load(model_id):
                                logger.info(f"[{bot_id}] Loaded {language} model from store")
                                continue
                            logger.warning(f"[{bot_id}] Stored {language} model unusable, retraining")
                        to_queue.append(language)
                    except Exception as e:
                        logger.warning(f"[{bot_id}] Could not prepare {language} model: {e}")
                        to_mark.append(language)

                await predictor.mount()
            except Exception:
                service.unsubscribe(subscription_id)
                logger.exception(f"[{bot_id}] Mount failed")
                raise

            self.bot_registry.set_bot(bot_id, predictor)
            self._subscriptions[bot_id] = (service, subscription_id)

            try:
                for language in to_queue:
                    await self.training_queue.queue_training((bot_id, language))
                for language in to_mark:
                    await self.training_queue.needs_training((bot_id, language))
            except Exception:
                logger.exception(f"[{bot_id}] Could not schedule training, rolling back mount")
                await self._detach(bot_id, predictor)
                raise

            logger.info(
                f"[{bot_id}] Mounted: {len(bot_config.languages) - len(to_queue) - len(to_mark)} loaded, "
                f"{len(to_queue)} queued, {len(to_mark)} need training"
            )

    async def _handle_dirty_model(
        self,
        bot_id: str,
        predictor: Predictor,
        service: DefinitionsService,
        model_store: ModelStore,
        language: str,
    ) -> None:
        async with self._bot_lock(bot_id):
            if self.bot_registry.get_bot(bot_id) is not predictor:
                logger.debug(f"[{bot_id}] Dirty model for a bot no longer mounted, ignoring")
                return

            model_id = await service.get_latest_model_id(language)
            if await model_store.has_model(model_id) and await predictor.load(model_id):
                logger.info(f"[{bot_id}] Dirty {language} model resolved from store")
                return
            await self.training_queue.needs_training((bot_id, language))

    async def unmount_bot(self, bot_id: str) -> None:
        """Unmount a bot. In-flight training keeps running and still persists its model."""
        async with self._bot_lock(bot_id):
            predictor = self.bot_registry.get_bot(bot_id)
            if predictor is None:
                raise BotNotMountedError(bot_id)
            await self._detach(bot_id, predictor)

    async def _detach(self, bot_id: str, predictor: Predictor) -> None:
        """Unmount `predictor` and drop its subscription and registration. Caller holds the bot lock."""
        try:
            await predictor.unmount()
        finally:
            subscription = self._subscriptions.pop(bot_id, None)
            if subscription is not None:
                service, subscription_id = subscription
                service.unsubscribe(subscription_id)
            self.bot_registry.remove_bot(bot_id)

    # ========================================================================
    # Training
    # ========================================================================

    async def queue_training(self, bot_id: str, language: str) -> TrainingSession:
        if not self.bot_registry.has_bot(bot_id):
            raise BotNotMountedError(bot_id)
        return await self.training_queue.queue_training((bot_id, language))

    async def cancel_training(self, bot_id: str, language: str) -> TrainingSession:
        if not self.bot_registry.has_bot(bot_id):
            raise BotNotMountedError(bot_id)
        return await self.training_queue.cancel_training((bot_id, language))


def create_application(
    config: Optional[NLUConfig] = None,
    definitions: Optional[DefinitionsRepository] = None,
    model_store_factory: Optional[ModelStoreFactory] = None,
) -> NLUApplication:
    """Wire registry, queue, training handler and bot factory."""
    config = config or NLUConfig()
    definitions = definitions or DefinitionsRepository()
    registry = BotRegistry()
    queue = TrainingQueue(BotTrainingHandler(registry), config.queue)
    factory = BotFactory(config, definitions, model_store_factory)
    return NLUApplication(queue, registry, factory)
