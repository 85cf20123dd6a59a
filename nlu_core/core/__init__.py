"""
NLU Core - Bot lifecycle, training and prediction
=================================================

Core components:
- Engine: per-bot model slots, training and inference
- TrainingQueue: at-most-one-in-flight training per (bot, language)
- NLUApplication: mount/unmount orchestration and dirty-model handling
- Model stores and definitions (versioning) services
"""

from __future__ import annotations

import importlib
from typing import Any

# Exports resolve lazily: nlu_core.models imports from this package, and
# the engine imports nlu_core.models.
_EXPORTS = {
    # Application
    "NLUApplication": "nlu_core.core.application",
    "create_application": "nlu_core.core.application",
    # Bots
    "Bot": "nlu_core.core.bot",
    "BotFactory": "nlu_core.core.bot",
    "BotHandle": "nlu_core.core.bot",
    "BotTrainingHandler": "nlu_core.core.bot",
    "Predictor": "nlu_core.core.bot",
    "TrainablePredictor": "nlu_core.core.bot",
    "BotRegistry": "nlu_core.core.bot_registry",
    # Engine
    "Engine": "nlu_core.core.engine",
    "TrainingOptions": "nlu_core.core.engine",
    "CancellationToken": "nlu_core.core.cancellation",
    # Training
    "TrainingQueue": "nlu_core.core.training_queue",
    "TrainingHandler": "nlu_core.core.training_queue",
    # Storage / definitions
    "ModelStore": "nlu_core.core.model_store",
    "InMemoryModelStore": "nlu_core.core.model_store",
    "FileModelStore": "nlu_core.core.model_store",
    "create_model_store": "nlu_core.core.model_store",
    "make_model_id": "nlu_core.core.model_store",
    "parse_model_id": "nlu_core.core.model_store",
    "DefinitionsRepository": "nlu_core.core.definitions",
    "DefinitionsService": "nlu_core.core.definitions",
    "DirtyModelChannel": "nlu_core.core.definitions",
    # Data model
    "BotConfig": "nlu_core.core.schema",
    "IntentDefinition": "nlu_core.core.schema",
    "EntityDefinition": "nlu_core.core.schema",
    "Model": "nlu_core.core.schema",
    "ModelData": "nlu_core.core.schema",
    "Prediction": "nlu_core.core.schema",
    "Health": "nlu_core.core.schema",
    "TrainingSession": "nlu_core.core.schema",
    "TrainingStatus": "nlu_core.core.schema",
    # Errors
    "NLUError": "nlu_core.core.errors",
    "ErrorCategory": "nlu_core.core.errors",
    "BotNotMountedError": "nlu_core.core.errors",
    "BotAlreadyMountedError": "nlu_core.core.errors",
    "ModelNotLoadedError": "nlu_core.core.errors",
    "QueueNotInitializedError": "nlu_core.core.errors",
    "TrainingCanceledError": "nlu_core.core.errors",
    "ModelLoadError": "nlu_core.core.errors",
}


def __getattr__(name: str) -> Any:
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(importlib.import_module(module_name), name)


__all__ = list(_EXPORTS)
