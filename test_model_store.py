"""
Model store tests: in-memory and file-backed stores, model ids
"""

from __future__ import annotations

from datetime import datetime

import pytest

from nlu_core.configs.nlu_config import StorageConfig
from nlu_core.core.model_store import (
    FileModelStore,
    InMemoryModelStore,
    create_model_store,
    make_model_id,
    parse_model_id,
)
from nlu_core.core.schema import Model, ModelData


def _model(language: str = "en") -> Model:
    return Model(
        hash="abc",
        language_code=language,
        started_at=datetime(2024, 1, 1, 12, 0, 0),
        finished_at=datetime(2024, 1, 1, 12, 0, 5),
        data=ModelData(input='{"intents":[]}', output="AAAA"),
    )


def test_model_id_format():
    model_id = make_model_id("content", "engine", "en")
    assert model_id == "content.engine.en"
    parsed = parse_model_id(model_id)
    assert (parsed.content_hash, parsed.specification_hash, parsed.language_code) == ("content", "engine", "en")

    with pytest.raises(ValueError):
        parse_model_id("not-a-model-id")


@pytest.mark.asyncio
async def test_in_memory_store():
    store = InMemoryModelStore()
    assert not await store.has_model("a.b.en")
    assert await store.get_model("a.b.en") is None

    await store.save_model("a.b.en", _model("en"))
    await store.save_model("a.b.fr", _model("fr"))

    assert await store.has_model("a.b.en")
    assert await store.list_models() == ["a.b.en", "a.b.fr"]
    assert await store.list_models(language="fr") == ["a.b.fr"]
    assert await store.delete_model("a.b.en")
    assert not await store.delete_model("a.b.en")


@pytest.mark.asyncio
async def test_file_store_round_trip(tmp_path):
    store = FileModelStore(tmp_path / "models")
    assert await store.list_models() == []

    await store.save_model("a.b.en", _model())

    assert (tmp_path / "models" / "a.b.en.model.json").exists()
    assert not list((tmp_path / "models").glob("*.tmp"))
    assert await store.has_model("a.b.en")

    loaded = await store.get_model("a.b.en")
    assert loaded == _model()

    assert await store.list_models(language="en") == ["a.b.en"]
    assert await store.delete_model("a.b.en")
    assert not await store.has_model("a.b.en")
    assert await store.get_model("a.b.en") is None


@pytest.mark.asyncio
async def test_file_store_rejects_path_like_ids(tmp_path):
    store = FileModelStore(tmp_path)
    with pytest.raises(ValueError):
        await store.save_model("../escape", _model())


def test_create_model_store(tmp_path):
    assert isinstance(create_model_store(StorageConfig(), "b1"), InMemoryModelStore)

    store = create_model_store(StorageConfig(backend="file"), "b1", base_dir=tmp_path)
    assert isinstance(store, FileModelStore)
    assert store.directory == tmp_path / "b1"

    with pytest.raises(ValueError):
        create_model_store(StorageConfig(backend="s3"), "b1")
