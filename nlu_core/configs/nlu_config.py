"""
Dynamic configuration for the NLU core
Settings load from YAML/JSON files with nested environment overrides
"""
from __future__ import annotations

import hashlib
import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

# Bump when the trainable unit changes in a way that invalidates stored models
ENGINE_VERSION = "1.0.0"


def _deep_merge(base: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge `incoming` into `base` (returns a new dict)."""
    out: Dict[str, Any] = dict(base)
    for k, v in incoming.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _set_in(d: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    cur: Dict[str, Any] = d
    for p in path[:-1]:
        nxt = cur.get(p)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[p] = nxt
        cur = nxt
    cur[path[-1]] = value


def _parse_env_value(raw: str) -> Any:
    """Best-effort parse for env var overrides."""
    s = raw.strip()

    # JSON literals/objects/lists
    if s and s[0] in "[{\"" or s in {"true", "false", "null"}:
        try:
            return json.loads(s)
        except ValueError:
            pass

    low = s.lower()
    if low in {"true", "yes", "y"}:
        return True
    if low in {"false", "no", "n"}:
        return False

    try:
        if "." in s:
            return float(s)
        return int(s)
    except ValueError:
        return s


@dataclass
class EngineConfig:
    """Trainable unit hyperparameters and language support"""
    languages: List[str] = field(default_factory=lambda: ["en"])
    default_language: str = "en"

    hidden_size: int = 64
    epochs: int = 60
    batch_size: int = 16
    learning_rate: float = 0.01
    dropout: float = 0.1
    seed: int = 42

    device: str = "auto"  # auto, cpu, cuda, mps

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "EngineConfig":
        """Load from dictionary"""
        return cls(**{k: v for k, v in config.items() if k in cls.__annotations__})


@dataclass
class QueueConfig:
    """Training queue settings"""
    max_workers: int = 2
    teardown_timeout: float = 30.0  # seconds to wait for in-flight jobs

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "QueueConfig":
        """Load from dictionary"""
        return cls(**{k: v for k, v in config.items() if k in cls.__annotations__})


@dataclass
class StorageConfig:
    """Model storage backend"""
    backend: str = "memory"  # memory, file
    models_dir: str = "./models"

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "StorageConfig":
        """Load from dictionary"""
        return cls(**{k: v for k, v in config.items() if k in cls.__annotations__})


@dataclass
class NLUConfig:
    """
    Complete NLU core configuration

    Example YAML:
        engine:
          languages: [en, fr]
          epochs: 40
        queue:
          max_workers: 4
        storage:
          backend: file
          models_dir: ./models
    """
    engine: EngineConfig = field(default_factory=EngineConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    source_path: Optional[Path] = None

    @classmethod
    def from_yaml(cls, yaml_path: str | os.PathLike[str]) -> "NLUConfig":
        """Load configuration from YAML file"""
        p = Path(yaml_path)
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("Config YAML must contain a mapping at the root")
        config = cls._from_dict(data)
        config.source_path = p
        return config

    @classmethod
    def from_json(cls, json_path: str | os.PathLike[str]) -> "NLUConfig":
        """Load configuration from JSON file"""
        p = Path(json_path)
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("Config JSON must contain a mapping at the root")
        config = cls._from_dict(data)
        config.source_path = p
        return config

    @classmethod
    def from_env(
        cls,
        *,
        prefix: str = "NLU__",
        base: Optional["NLUConfig"] = None,
    ) -> "NLUConfig":
        """Apply overrides from env vars like `NLU__QUEUE__MAX_WORKERS=4`.

        - `__` means nesting
        - values are parsed (json/bool/number/string)
        """
        overrides: Dict[str, Any] = {}

        for k, v in os.environ.items():
            if not k.startswith(prefix):
                continue
            parts = tuple(p.lower() for p in k[len(prefix):].split("__") if p)
            if not parts:
                continue
            _set_in(overrides, parts, _parse_env_value(v))

        merged = _deep_merge(base.to_dict() if base else {}, overrides)
        config = cls._from_dict(merged)
        config.source_path = base.source_path if base else None
        return config

    @classmethod
    def _from_dict(cls, config: Dict[str, Any]) -> "NLUConfig":
        """Internal method to construct from dictionary"""
        return cls(
            engine=EngineConfig.from_dict(config.get("engine") or {}),
            queue=QueueConfig.from_dict(config.get("queue") or {}),
            storage=StorageConfig.from_dict(config.get("storage") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "engine": asdict(self.engine),
            "queue": asdict(self.queue),
            "storage": asdict(self.storage),
        }

    def specification_hash(self) -> str:
        """Digest of everything that shapes a trained model."""
        settings = {
            "version": ENGINE_VERSION,
            "hidden_size": self.engine.hidden_size,
            "epochs": self.engine.epochs,
            "batch_size": self.engine.batch_size,
            "learning_rate": self.engine.learning_rate,
            "dropout": self.engine.dropout,
            "seed": self.engine.seed,
        }
        payload = json.dumps(settings, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    def resolve_models_dir(self) -> Path:
        p = Path(self.storage.models_dir)
        if p.is_absolute():
            return p
        base = self.source_path.parent if self.source_path else Path.cwd()
        return (base / p).resolve()

    def save_yaml(self, yaml_path: str | os.PathLike[str]) -> None:
        """Save configuration to YAML"""
        p = Path(yaml_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    def save_json(self, json_path: str | os.PathLike[str]) -> None:
        """Save configuration to JSON"""
        p = Path(json_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)


class NLUPresets:
    """Pre-configured NLU settings"""

    @staticmethod
    def default() -> NLUConfig:
        return NLUConfig()

    @staticmethod
    def fast_training() -> NLUConfig:
        """Small network and few epochs, for tests and local iteration"""
        return NLUConfig(
            engine=EngineConfig(hidden_size=32, epochs=40, batch_size=8, learning_rate=0.05, device="cpu"),
            queue=QueueConfig(max_workers=2, teardown_timeout=10.0),
        )
