"""
Model Store - Content-addressed storage of trained models
==========================================================

Models are keyed by a model id derived from the hash of their training data,
the engine specification and the language:

    <content_hash>.<specification_hash>.<language>

Two stores ship with the core:
- InMemoryModelStore: per-process dict, used by tests and ephemeral setups
- FileModelStore: one JSON document per model, written atomically
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os

from nlu_core.configs.nlu_config import StorageConfig
from nlu_core.core.schema import Model

logger = logging.getLogger(__name__)

MODEL_FILE_SUFFIX = ".model.json"


@dataclass(frozen=True)
class ModelId:
    content_hash: str
    specification_hash: str
    language_code: str

    def __str__(self) -> str:
        return f"{self.content_hash}.{self.specification_hash}.{self.language_code}"


def make_model_id(content_hash: str, specification_hash: str, language_code: str) -> str:
    return str(ModelId(content_hash, specification_hash, language_code))


def parse_model_id(model_id: str) -> ModelId:
    parts = model_id.split(".")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid model id: {model_id!r}")
    return ModelId(*parts)


class ModelStore(ABC):
    """Storage contract: existence, persistence, retrieval and invalidation."""

    @abstractmethod
    async def has_model(self, model_id: str) -> bool:
        ...

    @abstractmethod
    async def get_model(self, model_id: str) -> Optional[Model]:
        ...

    @abstractmethod
    async def save_model(self, model_id: str, model: Model) -> None:
        ...

    @abstractmethod
    async def delete_model(self, model_id: str) -> bool:
        ...

    @abstractmethod
    async def list_models(self, language: Optional[str] = None) -> List[str]:
        ...


class InMemoryModelStore(ModelStore):
    def __init__(self):
        self._models: Dict[str, Model] = {}

    async def has_model(self, model_id: str) -> bool:
        return model_id in self._models

    async def get_model(self, model_id: str) -> Optional[Model]:
        return self._models.get(model_id)

    async def save_model(self, model_id: str, model: Model) -> None:
        self._models[model_id] = model

    async def delete_model(self, model_id: str) -> bool:
        return self._models.pop(model_id, None) is not None

    async def list_models(self, language: Optional[str] = None) -> List[str]:
        return sorted(
            mid for mid in self._models
            if language is None or mid.endswith(f".{language}")
        )


class FileModelStore(ModelStore):
    """
    One `<model_id>.model.json` file per model under `directory`.

    Writes go to a temp file first and are renamed into place, so readers
    never see a partial model.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def _path(self, model_id: str) -> Path:
        if "/" in model_id or "\\" in model_id or model_id.startswith("."):
            raise ValueError(f"Invalid model id: {model_id!r}")
        return self.directory / f"{model_id}{MODEL_FILE_SUFFIX}"

    async def has_model(self, model_id: str) -> bool:
        return await aiofiles.os.path.exists(self._path(model_id))

    async def get_model(self, model_id: str) -> Optional[Model]:
        path = self._path(model_id)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        return Model.from_dict(json.loads(content))

    async def save_model(self, model_id: str, model: Model) -> None:
        path = self._path(model_id)
        temp_path = path.with_suffix(".tmp")
        async with self._lock:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(model.to_dict()))
            await aiofiles.os.replace(temp_path, path)
        logger.debug(f"Model {model_id} written to {path}")

    async def delete_model(self, model_id: str) -> bool:
        path = self._path(model_id)
        async with self._lock:
            if not await aiofiles.os.path.exists(path):
                return False
            await aiofiles.os.remove(path)
        return True

    async def list_models(self, language: Optional[str] = None) -> List[str]:
        if not await aiofiles.os.path.exists(self.directory):
            return []
        ids = [
            name[: -len(MODEL_FILE_SUFFIX)]
            for name in await aiofiles.os.listdir(self.directory)
            if name.endswith(MODEL_FILE_SUFFIX)
        ]
        return sorted(mid for mid in ids if language is None or mid.endswith(f".{language}"))


def create_model_store(config: StorageConfig, bot_id: str, base_dir: Optional[Path] = None) -> ModelStore:
    """Per-bot store for the configured backend."""
    if config.backend == "memory":
        return InMemoryModelStore()
    if config.backend == "file":
        root = base_dir if base_dir is not None else Path(config.models_dir)
        return FileModelStore(root / bot_id)
    raise ValueError(f"Unknown storage backend: {config.backend}")
