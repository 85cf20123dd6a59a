"""
NLU Errors - Typed failures surfaced to callers
================================================

Structural errors (unknown bot, missing model) are raised to the immediate
caller and are expected to be mapped by the API layer (404/409). Storage and
serialization failures while loading a model are absorbed by the engine and
only show up as a stale model.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Categories of NLU errors."""

    NOT_FOUND = auto()
    CONFLICT = auto()
    MODEL_NOT_LOADED = auto()
    CONFIGURATION = auto()
    CANCELED = auto()
    CORRUPTION = auto()


class NLUError(Exception):
    """Base error with a category and structured details."""

    category: ErrorCategory = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.category.name}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "message": self.message,
            "details": self.details,
        }


class BotNotMountedError(NLUError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, bot_id: str):
        super().__init__(f"Bot {bot_id} is not mounted", {"bot_id": bot_id})
        self.bot_id = bot_id


class BotAlreadyMountedError(NLUError):
    category = ErrorCategory.CONFLICT

    def __init__(self, bot_id: str):
        super().__init__(f"Bot {bot_id} is already mounted", {"bot_id": bot_id})
        self.bot_id = bot_id


class ModelNotLoadedError(NLUError):
    category = ErrorCategory.MODEL_NOT_LOADED

    def __init__(self, language: str, bot_id: Optional[str] = None):
        super().__init__(
            f"Model not loaded for language {language}",
            {"language": language, "bot_id": bot_id},
        )
        self.language = language


class QueueNotInitializedError(NLUError):
    category = ErrorCategory.CONFIGURATION

    def __init__(self):
        super().__init__("Training queue is not initialized")


class TrainingCanceledError(NLUError):
    category = ErrorCategory.CANCELED

    def __init__(self, session_id: str = ""):
        super().__init__(f"Training {session_id} was canceled", {"session_id": session_id})
        self.session_id = session_id


class ModelLoadError(NLUError):
    """Corrupt or incompatible model artifact."""

    category = ErrorCategory.CORRUPTION
