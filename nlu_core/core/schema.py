"""
NLU Data Model
==============

Plain dataclasses shared by the engine, the training queue and the
orchestrator. Everything that crosses a storage boundary has a
`to_dict`/`from_dict` pair with ISO-8601 timestamps.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

GLOBAL_CONTEXT = "global"

TrainingKey = Tuple[str, str]  # (bot_id, language)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ============================================================================
# Bot / definitions
# ============================================================================

@dataclass(frozen=True)
class BotConfig:
    """Input to mounting, owned by the configuration layer."""
    id: str
    languages: Tuple[str, ...] = ("en",)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotConfig":
        return cls(id=str(data["id"]), languages=tuple(data.get("languages", ["en"])))


@dataclass
class IntentDefinition:
    name: str
    contexts: List[str] = field(default_factory=lambda: [GLOBAL_CONTEXT])
    utterances: Dict[str, List[str]] = field(default_factory=dict)
    slots: List[Dict[str, Any]] = field(default_factory=list)

    def for_language(self, language: str) -> "IntentDefinition":
        """Copy of this intent carrying only `language` utterances."""
        return replace(
            self,
            contexts=list(self.contexts),
            utterances={language: list(self.utterances.get(language, []))},
            slots=[dict(s) for s in self.slots],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "contexts": list(self.contexts),
            "utterances": {lang: list(utts) for lang, utts in self.utterances.items()},
            "slots": [dict(s) for s in self.slots],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntentDefinition":
        return cls(
            name=data["name"],
            contexts=list(data.get("contexts") or [GLOBAL_CONTEXT]),
            utterances={lang: list(utts) for lang, utts in (data.get("utterances") or {}).items()},
            slots=list(data.get("slots", [])),
        )


@dataclass
class EntityDefinition:
    name: str
    type: str = "list"
    occurrences: List[Dict[str, Any]] = field(default_factory=list)  # [{name, synonyms}]
    fuzzy: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "occurrences": [
                {"name": o["name"], "synonyms": list(o.get("synonyms", []))}
                for o in self.occurrences
            ],
            "fuzzy": self.fuzzy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityDefinition":
        return cls(
            name=data["name"],
            type=data.get("type", "list"),
            occurrences=list(data.get("occurrences", [])),
            fuzzy=float(data.get("fuzzy", 1.0)),
        )


# ============================================================================
# Models
# ============================================================================

@dataclass
class ModelData:
    input: str   # JSON-serialized intents the model was trained on
    output: str  # opaque artifact (base64 of the serialized trainable unit)


@dataclass
class Model:
    """Serializable snapshot of a trained model for one language."""
    hash: str
    language_code: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    data: ModelData

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "languageCode": self.language_code,
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "data": {"input": self.data.input, "output": self.data.output},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Model":
        payload = data.get("data") or {}
        return cls(
            hash=data.get("hash", ""),
            language_code=data.get("languageCode", ""),
            started_at=_from_iso(data.get("startedAt")),
            finished_at=_from_iso(data.get("finishedAt")),
            data=ModelData(input=payload.get("input", "[]"), output=payload.get("output", "")),
        )


# ============================================================================
# Training sessions
# ============================================================================

class TrainingStatus(Enum):
    """Lifecycle of a training session"""
    NONE = "none"                    # Synthetic: no session ever existed
    NEEDS_TRAINING = "needs-training"
    QUEUED = "queued"
    TRAINING = "training"
    DONE = "done"
    CANCELED = "canceled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TrainingStatus.DONE, TrainingStatus.CANCELED, TrainingStatus.ERRORED)

    @property
    def is_active(self) -> bool:
        return self in (TrainingStatus.QUEUED, TrainingStatus.TRAINING)


@dataclass
class TrainingSession:
    bot_id: str
    language: str
    id: str = ""
    status: TrainingStatus = TrainingStatus.NONE
    progress: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def key(self) -> TrainingKey:
        return (self.bot_id, self.language)

    def snapshot(self) -> "TrainingSession":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "botId": self.bot_id,
            "language": self.language,
            "id": self.id,
            "status": self.status.value,
            "progress": round(self.progress, 4),
            "startedAt": _iso(self.started_at),
            "finishedAt": _iso(self.finished_at),
            "error": self.error,
        }


# ============================================================================
# Predictions / health
# ============================================================================

@dataclass
class IntentPrediction:
    name: str
    confidence: float


@dataclass
class ContextPrediction:
    confidence: float
    oos: float
    intents: List[IntentPrediction] = field(default_factory=list)


@dataclass
class EntityMatch:
    name: str
    value: str
    source: str
    start: int
    end: int


@dataclass
class Prediction:
    language: str
    detected_language: str
    ms: float
    errored: bool = False
    entities: List[EntityMatch] = field(default_factory=list)
    included_contexts: List[str] = field(default_factory=list)
    predictions: Dict[str, ContextPrediction] = field(default_factory=dict)

    def top_intent(self, context: Optional[str] = None) -> Optional[IntentPrediction]:
        """Best intent of `context`, or across all contexts when omitted.

        Across contexts, intents are ranked by absolute probability (context
        confidence times in-context confidence).
        """
        if context is not None:
            candidates = self.predictions.get(context, ContextPrediction(0.0, 1.0)).intents
            return max(candidates, key=lambda i: i.confidence, default=None)
        scored = [(ctx.confidence * i.confidence, i) for ctx in self.predictions.values() for i in ctx.intents]
        if not scored:
            return None
        return max(scored, key=lambda pair: pair[0])[1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "detectedLanguage": self.detected_language,
            "ms": round(self.ms, 3),
            "errored": self.errored,
            "entities": [e.__dict__ for e in self.entities],
            "includedContexts": list(self.included_contexts),
            "predictions": {
                ctx: {
                    "confidence": p.confidence,
                    "oos": p.oos,
                    "intents": [{"label": i.name, "confidence": i.confidence} for i in p.intents],
                }
                for ctx, p in self.predictions.items()
            },
        }


@dataclass
class Health:
    is_enabled: bool
    valid_providers_count: int
    valid_languages: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isEnabled": self.is_enabled,
            "validProvidersCount": self.valid_providers_count,
            "validLanguages": list(self.valid_languages),
        }
