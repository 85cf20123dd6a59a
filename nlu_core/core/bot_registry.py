"""
Bot Registry - Mounted bots by id
=================================

Pure in-memory mapping; absence is reported as None, never as an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional, Set

if TYPE_CHECKING:
    from nlu_core.core.bot import Predictor

logger = logging.getLogger(__name__)


class BotRegistry:
    def __init__(self):
        self._bots: Dict[str, "Predictor"] = {}

    def set_bot(self, bot_id: str, predictor: "Predictor") -> None:
        self._bots[bot_id] = predictor
        logger.debug(f"Registered bot {bot_id}")

    def get_bot(self, bot_id: str) -> Optional["Predictor"]:
        return self._bots.get(bot_id)

    def remove_bot(self, bot_id: str) -> None:
        if self._bots.pop(bot_id, None) is not None:
            logger.debug(f"Removed bot {bot_id}")

    def get_ids(self) -> Set[str]:
        return set(self._bots)

    def has_bot(self, bot_id: str) -> bool:
        return bot_id in self._bots

    def __len__(self) -> int:
        return len(self._bots)
