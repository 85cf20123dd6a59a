"""
Definitions tests: repository edits, dirty-model channel, versioning, featurizer
"""

from __future__ import annotations

import pytest

from conftest import make_entities, make_intents
from nlu_core.core.definitions import DefinitionsRepository, DefinitionsService, DirtyModelChannel
from nlu_core.core.engine import Engine
from nlu_core.core.schema import IntentDefinition
from nlu_core.models.featurizer import extract_list_entities, featurize, tokenize


def _service(repository: DefinitionsRepository) -> DefinitionsService:
    return DefinitionsService("b1", repository, Engine("b1").compute_model_hash, "engine")


# ============================================================================
# Dirty-model channel
# ============================================================================

@pytest.mark.asyncio
async def test_channel_delivers_to_every_subscriber():
    channel = DirtyModelChannel("b1")
    received = []

    async def first(language):
        received.append(("first", language))

    async def failing(language):
        raise RuntimeError("handler bug")

    sub_id = channel.subscribe(first)
    channel.subscribe(failing)

    assert channel.publish("en") == 2
    await channel.drain()
    assert received == [("first", "en")]

    assert channel.unsubscribe(sub_id)
    assert not channel.unsubscribe(sub_id)
    assert channel.subscriber_count == 1


# ============================================================================
# Repository / versioning
# ============================================================================

@pytest.mark.asyncio
async def test_edits_publish_dirty_languages():
    repository = DefinitionsRepository()
    repository.set_definitions("b1", make_intents(), make_entities(), ["en"])
    dirty = []

    async def on_dirty(language):
        dirty.append(language)

    service = _service(repository)
    service.listen_for_dirty_models(on_dirty)

    repository.update_intent("b1", IntentDefinition(name="thanks", utterances={"en": ["thank you"]}))
    await repository.channel_for("b1").drain()

    assert sorted(dirty) == ["en", "fr"]


@pytest.mark.asyncio
async def test_latest_model_id_follows_definitions():
    repository = DefinitionsRepository()
    repository.set_definitions("b1", make_intents(), make_entities(), ["en", "fr"])
    service = _service(repository)

    en_before = await service.get_latest_model_id("en")
    fr_before = await service.get_latest_model_id("fr")
    assert en_before.endswith(".engine.en")

    repository.update_intent("b1", IntentDefinition(name="thanks", utterances={"en": ["thank you"]}))

    assert await service.get_latest_model_id("en") != en_before
    assert await service.get_latest_model_id("fr") == fr_before

    assert repository.delete_intent("b1", "thanks")
    assert not repository.delete_intent("b1", "thanks")
    assert await service.get_latest_model_id("en") == en_before


def test_get_intents_is_restricted_to_language():
    repository = DefinitionsRepository()
    repository.set_definitions("b1", make_intents(), make_entities())
    service = _service(repository)

    fr = service.get_intents("fr")
    assert [i.name for i in fr] == ["greet", "goodbye"]
    assert all(list(i.utterances) == ["fr"] for i in fr)
    assert [e.name for e in service.get_entities()] == ["city"]


def test_load_file(tmp_path):
    path = tmp_path / "bot.yaml"
    path.write_text(
        "id: pizza-bot\n"
        "languages: [en]\n"
        "intents:\n"
        "  - name: order\n"
        "    utterances:\n"
        "      en: [i want a pizza, order a margherita]\n"
        "entities:\n"
        "  - name: pizza\n"
        "    occurrences:\n"
        "      - {name: margherita, synonyms: [marg]}\n",
        encoding="utf-8",
    )
    repository = DefinitionsRepository()

    definitions = repository.load_file(path)

    assert definitions.bot_id == "pizza-bot"
    assert definitions.to_bot_config().languages == ("en",)
    assert definitions.intents[0].contexts == ["global"]
    assert repository.bot_ids() == ["pizza-bot"]


# ============================================================================
# Featurizer
# ============================================================================

def test_tokenize_and_entities():
    assert tokenize("Book a FLIGHT, to Paris!") == ["book", "a", "flight", "to", "paris"]

    entities = make_entities()
    matches = extract_list_entities("from london to paname", entities)
    assert [(m.value, m.start, m.end) for m in matches] == [("London", 5, 11), ("Paris", 15, 21)]
    assert extract_list_entities("parisian food", entities) == []

    assert featurize("fly to london", entities) == ["fly", "to", "london", "@city"]
