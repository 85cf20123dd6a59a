"""
NLU Engine - Per-bot model ownership, training and prediction
==============================================================

Holds at most one loaded model per language for a single bot.

Model slots are replaced, never mutated: a retrain works on a fresh (or
cloned) IntentNet in a worker thread and the finished unit is swapped into
its slot on the event loop. Readers therefore always see either the old or
the new model.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import torch

from nlu_core.configs.nlu_config import EngineConfig
from nlu_core.core.cancellation import CancellationToken
from nlu_core.core.errors import ModelNotLoadedError
from nlu_core.core.schema import (
    GLOBAL_CONTEXT,
    ContextPrediction,
    EntityDefinition,
    Health,
    IntentDefinition,
    IntentPrediction,
    Model,
    ModelData,
    Prediction,
)
from nlu_core.models.featurizer import extract_list_entities, tokenize
from nlu_core.models.intent_net import IntentNet, detect_device

logger = logging.getLogger(__name__)


@dataclass
class TrainingOptions:
    progress_callback: Optional[Callable[[float], None]] = None


@dataclass
class LoadedModel:
    """In-memory model for one language."""
    hash: str
    language_code: str
    intents: List[IntentDefinition]
    entities: List[EntityDefinition]
    output: str
    net: IntentNet
    session_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    contexts: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.contexts:
            self.contexts = sorted({ctx for i in self.intents for ctx in (i.contexts or [GLOBAL_CONTEXT])})


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class Engine:
    """
    Owns the loaded models of one bot.

    Usage:
        engine = Engine("my-bot", EngineConfig())
        model = await engine.train(session_id, intents, entities, "en")
        prediction = engine.predict("hello there", ["global"], "en")
    """

    def __init__(self, bot_id: str, config: Optional[EngineConfig] = None):
        self.bot_id = bot_id
        self.config = config or EngineConfig()
        self._models_by_lang: Dict[str, LoadedModel] = {}
        self._training: Dict[str, IntentNet] = {}  # session_id -> unit being trained
        self._disposed = False

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @staticmethod
    def get_health(config: Optional[EngineConfig] = None) -> Health:
        config = config or EngineConfig()
        device = detect_device(config.device)
        enabled = device == "cpu" or (device == "cuda" and torch.cuda.is_available()) or (
            device == "mps" and torch.backends.mps.is_available()
        )
        if not enabled:
            logger.warning(f"Training device {device} is not available")
        return Health(
            is_enabled=enabled,
            valid_providers_count=1 if enabled else 0,
            valid_languages=list(config.languages) if enabled else [],
        )

    # ------------------------------------------------------------------
    # Model state
    # ------------------------------------------------------------------

    @property
    def languages(self) -> List[str]:
        return sorted(self._models_by_lang)

    def compute_model_hash(
        self,
        intents: Sequence[IntentDefinition],
        entities: Sequence[EntityDefinition],
        language_code: str,
    ) -> str:
        payload = {
            "intents": [i.to_dict() for i in intents],
            "entities": [e.to_dict() for e in entities],
            "lang": language_code,
            "botId": self.bot_id,
        }
        return hashlib.sha256(_canonical_json(payload).encode("utf-8")).hexdigest()

    def has_model(self, language: str, hash: str) -> bool:
        model = self._models_by_lang.get(language)
        return model is not None and model.hash == hash

    def has_model_for_lang(self, language: str) -> bool:
        return language in self._models_by_lang

    def get_model_hash(self, language: str) -> Optional[str]:
        model = self._models_by_lang.get(language)
        return model.hash if model else None

    def dispose(self) -> None:
        """Drop every loaded model; later training completions are not installed."""
        self._disposed = True
        self._models_by_lang.clear()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def train(
        self,
        session_id: str,
        intents: Sequence[IntentDefinition],
        entities: Sequence[EntityDefinition],
        language_code: str,
        options: Optional[TrainingOptions] = None,
    ) -> Optional[Model]:
        """
        Train a model for `language_code` and install it.

        Returns None (and changes nothing) when there are no intents.
        Raises TrainingCanceledError when canceled through `cancel_training`,
        even if the cancel lands after the last minibatch.
        """
        if not intents:
            return None
        options = options or TrainingOptions()
        intents = list(intents)
        entities = list(entities)

        current = self._models_by_lang.get(language_code)
        if current is not None and current.net.can_warm_start(intents, entities):
            net = current.net.clone()
        else:
            net = IntentNet.from_config(language_code, self.config)

        token = CancellationToken(session_id)
        net.token = token
        self._training[session_id] = net

        logger.info(f"[{self.bot_id}] Started {language_code} training ({session_id})")
        started_at = datetime.now()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, lambda: net.fit(intents, entities, token, options.progress_callback)
            )
            # A cancel after the last minibatch still wins over installing
            token.throw_if_canceled()
            output = base64.b64encode(net.dumps()).decode("ascii")
        finally:
            self._training.pop(session_id, None)
        finished_at = datetime.now()

        model_hash = self.compute_model_hash(intents, entities, language_code)
        loaded = LoadedModel(
            hash=model_hash,
            language_code=language_code,
            intents=intents,
            entities=entities,
            output=output,
            net=net,
            session_id=session_id,
            started_at=started_at,
            finished_at=finished_at,
        )
        if self._disposed:
            logger.info(f"[{self.bot_id}] Engine disposed, {language_code} model not installed")
        else:
            self._models_by_lang[language_code] = loaded
        logger.info(
            f"[{self.bot_id}] Finished {language_code} training in "
            f"{(finished_at - started_at).total_seconds():.2f}s"
        )

        return Model(
            hash=model_hash,
            language_code=language_code,
            started_at=started_at,
            finished_at=finished_at,
            data=ModelData(
                input=_canonical_json({
                    "intents": [i.to_dict() for i in intents],
                    "entities": [e.to_dict() for e in entities],
                }),
                output=output,
            ),
        )

    async def cancel_training(self, session_id: str) -> bool:
        net = self._training.get(session_id)
        if net is None:
            return False
        logger.info(f"[{self.bot_id}] Canceling training {session_id}")
        net.cancel()
        return True

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_model(self, serialized: Optional[Model]) -> bool:
        if not serialized or not serialized.language_code:
            return False
        language = serialized.language_code
        try:
            payload = json.loads(serialized.data.input)
            intents = [IntentDefinition.from_dict(i) for i in payload.get("intents", [])]
            entities = [EntityDefinition.from_dict(e) for e in payload.get("entities", [])]
            blob = base64.b64decode(serialized.data.output.encode("ascii"), validate=True)
            loop = asyncio.get_running_loop()
            net = await loop.run_in_executor(None, lambda: IntentNet.loads(blob, self.config.device))
        except Exception as e:
            logger.error(f"[{self.bot_id}] Failed to load {language} model {serialized.hash[:12]}: {e}")
            return False

        if self._disposed:
            return False
        self._models_by_lang[language] = LoadedModel(
            hash=serialized.hash,
            language_code=language,
            intents=intents,
            entities=entities,
            output=serialized.data.output,
            net=net,
            started_at=serialized.started_at,
            finished_at=serialized.finished_at,
        )
        logger.info(f"[{self.bot_id}] Loaded {language} model {serialized.hash[:12]}")
        return True

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    async def detect_language(self, sentence: str) -> str:
        """Best-effort guess: the loaded language sharing the most tokens."""
        tokens = set(tokenize(sentence))
        scores = {
            lang: len(tokens & model.net.known_tokens())
            for lang, model in self._models_by_lang.items()
        }
        if scores:
            best = max(scores.values())
            winners = [lang for lang, score in scores.items() if score == best]
            if best > 0 and len(winners) == 1:
                return winners[0]
        return self.config.default_language

    def predict(self, sentence: str, contexts: Sequence[str], language: str) -> Prediction:
        model = self._models_by_lang.get(language)
        if model is None:
            raise ModelNotLoadedError(language, self.bot_id)

        t0 = time.perf_counter()
        probs = model.net.predict_proba(sentence, model.entities)
        oos = 1.0 - max(probs.values(), default=0.0)

        requested = list(contexts) if contexts else list(model.contexts)
        predictions: Dict[str, ContextPrediction] = {}
        for ctx in requested:
            members = [i.name for i in model.intents if ctx in (i.contexts or [GLOBAL_CONTEXT])]
            mass = sum(probs.get(name, 0.0) for name in members)
            if not members or mass <= 0.0:
                predictions[ctx] = ContextPrediction(confidence=0.0, oos=1.0, intents=[])
                continue
            ranking = sorted(
                (IntentPrediction(name=name, confidence=probs.get(name, 0.0) / mass) for name in members),
                key=lambda p: p.confidence,
                reverse=True,
            )
            predictions[ctx] = ContextPrediction(confidence=mass, oos=oos, intents=ranking)

        return Prediction(
            language=language,
            detected_language=language,
            ms=(time.perf_counter() - t0) * 1000.0,
            entities=extract_list_entities(sentence, model.entities),
            included_contexts=requested,
            predictions=predictions,
        )
