"""Cooperative cancellation for long-running training loops."""

from __future__ import annotations

import threading

from nlu_core.core.errors import TrainingCanceledError


class CancellationToken:
    """
    Thread-safe cancel flag shared between the event loop and a training thread.

    The trainable unit polls the token once per optimizer step, so a
    cancellation is honored at most one minibatch after it was requested.
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()

    def throw_if_canceled(self) -> None:
        if self._event.is_set():
            raise TrainingCanceledError(self.session_id)
