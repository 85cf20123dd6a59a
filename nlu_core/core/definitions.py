"""
Definitions & Versioning
========================

In-process stand-ins for the configuration layer:

- DefinitionsRepository: intents/entities per bot, loadable from YAML/JSON
- DirtyModelChannel: one-to-many "model is dirty for language X" notifications
- DefinitionsService: per-bot versioning view (latest model id + dirty stream)

Edits made through the repository publish a dirty notification for every
language the bot has utterances in. Delivery is asynchronous: each handler
runs in its own task and its failures are logged, never raised to the editor.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

import yaml

from nlu_core.core.model_store import make_model_id
from nlu_core.core.schema import BotConfig, EntityDefinition, IntentDefinition

logger = logging.getLogger(__name__)

DirtyModelHandler = Callable[[str], Awaitable[None]]
ModelHasher = Callable[[Sequence[IntentDefinition], Sequence[EntityDefinition], str], str]


@dataclass
class Subscription:
    """A subscription to dirty-model notifications."""
    handler: DirtyModelHandler
    subscription_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    created_at: float = field(default_factory=time.time)


class DirtyModelChannel:
    """Subscription-based dirty-model notifications for one bot."""

    def __init__(self, bot_id: str):
        self.bot_id = bot_id
        self._subscriptions: Dict[str, Subscription] = {}
        self._deliveries: Set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: DirtyModelHandler) -> str:
        subscription = Subscription(handler=handler)
        self._subscriptions[subscription.subscription_id] = subscription
        return subscription.subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    def publish(self, language: str) -> int:
        """Schedule delivery to every current subscriber. Returns the count."""
        handlers = [sub.handler for sub in self._subscriptions.values()]
        for handler in handlers:
            task = asyncio.get_running_loop().create_task(self._deliver(handler, language))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)
        return len(handlers)

    async def _deliver(self, handler: DirtyModelHandler, language: str) -> None:
        try:
            await handler(language)
        except Exception as e:
            logger.error(f"[{self.bot_id}] Dirty model handler failed for {language}: {e}")

    async def drain(self) -> None:
        """Wait for every scheduled delivery (including ones they schedule)."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)


@dataclass
class BotDefinitions:
    bot_id: str
    languages: List[str] = field(default_factory=lambda: ["en"])
    intents: List[IntentDefinition] = field(default_factory=list)
    entities: List[EntityDefinition] = field(default_factory=list)

    def to_bot_config(self) -> BotConfig:
        return BotConfig(id=self.bot_id, languages=tuple(self.languages))

    def utterance_languages(self) -> Set[str]:
        return {lang for i in self.intents for lang, utts in i.utterances.items() if utts}


def _parse_definitions(data: Dict) -> BotDefinitions:
    if not isinstance(data, dict) or "id" not in data:
        raise ValueError("Bot definitions must be a mapping with an 'id'")
    return BotDefinitions(
        bot_id=str(data["id"]),
        languages=list(data.get("languages", ["en"])),
        intents=[IntentDefinition.from_dict(i) for i in data.get("intents", [])],
        entities=[EntityDefinition.from_dict(e) for e in data.get("entities", [])],
    )


class DefinitionsRepository:
    """Intents and entities of every known bot."""

    def __init__(self):
        self._bots: Dict[str, BotDefinitions] = {}
        self._channels: Dict[str, DirtyModelChannel] = {}

    def channel_for(self, bot_id: str) -> DirtyModelChannel:
        channel = self._channels.get(bot_id)
        if channel is None:
            channel = DirtyModelChannel(bot_id)
            self._channels[bot_id] = channel
        return channel

    def get(self, bot_id: str) -> BotDefinitions:
        return self._bots.get(bot_id) or BotDefinitions(bot_id=bot_id)

    def bot_ids(self) -> List[str]:
        return sorted(self._bots)

    def load_file(self, path: str | Path) -> BotDefinitions:
        """Load `{id, languages, intents, entities}` from a YAML or JSON file."""
        p = Path(path)
        with p.open("r", encoding="utf-8") as f:
            if p.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        definitions = _parse_definitions(data)
        self.set_definitions(definitions.bot_id, definitions.intents, definitions.entities, definitions.languages)
        logger.info(f"Loaded definitions for {definitions.bot_id} from {p}")
        return self._bots[definitions.bot_id]

    def set_definitions(
        self,
        bot_id: str,
        intents: Sequence[IntentDefinition],
        entities: Sequence[EntityDefinition] = (),
        languages: Optional[Sequence[str]] = None,
    ) -> None:
        previous = self._bots.get(bot_id)
        self._bots[bot_id] = BotDefinitions(
            bot_id=bot_id,
            languages=list(languages) if languages else (previous.languages if previous else ["en"]),
            intents=list(intents),
            entities=list(entities),
        )
        self._mark_dirty(bot_id, previous)

    def update_intent(self, bot_id: str, intent: IntentDefinition) -> None:
        current = self.get(bot_id)
        intents = [i for i in current.intents if i.name != intent.name] + [intent]
        self.set_definitions(bot_id, intents, current.entities, current.languages)

    def delete_intent(self, bot_id: str, intent_name: str) -> bool:
        current = self.get(bot_id)
        intents = [i for i in current.intents if i.name != intent_name]
        if len(intents) == len(current.intents):
            return False
        self.set_definitions(bot_id, intents, current.entities, current.languages)
        return True

    def update_entity(self, bot_id: str, entity: EntityDefinition) -> None:
        current = self.get(bot_id)
        entities = [e for e in current.entities if e.name != entity.name] + [entity]
        self.set_definitions(bot_id, current.intents, entities, current.languages)

    def _mark_dirty(self, bot_id: str, previous: Optional[BotDefinitions]) -> None:
        channel = self._channels.get(bot_id)
        if channel is None or channel.subscriber_count == 0:
            return
        current = self._bots[bot_id]
        languages = set(current.languages) | current.utterance_languages()
        if previous is not None:
            languages |= previous.utterance_languages()
        for language in sorted(languages):
            channel.publish(language)


class DefinitionsService:
    """
    Per-bot versioning service.

    The latest model id of a language is derived from the hash of the
    definitions the model would be trained on, so it changes exactly when a
    retrain would produce a different model.
    """

    def __init__(
        self,
        bot_id: str,
        repository: DefinitionsRepository,
        hasher: ModelHasher,
        specification_hash: str,
    ):
        self.bot_id = bot_id
        self._repository = repository
        self._hasher = hasher
        self._specification_hash = specification_hash
        self._channel = repository.channel_for(bot_id)

    def get_intents(self, language: str) -> List[IntentDefinition]:
        """Intents with at least one `language` utterance, restricted to it."""
        return [
            intent.for_language(language)
            for intent in self._repository.get(self.bot_id).intents
            if intent.utterances.get(language)
        ]

    def get_entities(self) -> List[EntityDefinition]:
        return list(self._repository.get(self.bot_id).entities)

    def model_id_for(self, content_hash: str, language: str) -> str:
        return make_model_id(content_hash, self._specification_hash, language)

    async def get_latest_model_id(self, language: str) -> str:
        content_hash = self._hasher(self.get_intents(language), self.get_entities(), language)
        return self.model_id_for(content_hash, language)

    def listen_for_dirty_models(self, handler: DirtyModelHandler) -> str:
        return self._channel.subscribe(handler)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._channel.unsubscribe(subscription_id)
