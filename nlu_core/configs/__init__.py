"""NLU configuration presets"""
from nlu_core.configs.nlu_config import (
    ENGINE_VERSION,
    EngineConfig,
    NLUConfig,
    NLUPresets,
    QueueConfig,
    StorageConfig,
)

__all__ = [
    "ENGINE_VERSION",
    "EngineConfig",
    "NLUConfig",
    "NLUPresets",
    "QueueConfig",
    "StorageConfig",
]
