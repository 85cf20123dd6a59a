"""
IntentNet - Trainable intent classifier
========================================

Bag-of-words MLP over utterance tokens and list-entity markers.

Training runs synchronously (callers push it to an executor) and polls a
CancellationToken after every optimizer step.
"""

from __future__ import annotations

import copy
import io
import logging
from typing import Callable, Dict, List, Optional, Sequence

import torch
from torch import nn

from nlu_core.configs.nlu_config import EngineConfig
from nlu_core.core.cancellation import CancellationToken
from nlu_core.core.errors import ModelLoadError
from nlu_core.core.schema import EntityDefinition, IntentDefinition
from nlu_core.models.featurizer import featurize

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def detect_device(requested: str) -> str:
    if requested != "auto":
        return requested
    if torch.cuda.is_available():
        return "cuda"
    if torch.backends.mps.is_available():
        return "mps"
    return "cpu"


class _BagOfWordsClassifier(nn.Module):
    def __init__(self, vocab_size: int, hidden_size: int, num_labels: int, dropout: float):
        super().__init__()
        self.layers = nn.Sequential(
            nn.Linear(vocab_size, hidden_size),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(hidden_size, num_labels),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.layers(x)


class IntentNet:
    """One trainable unit for a single language."""

    def __init__(
        self,
        language: str,
        *,
        hidden_size: int = 64,
        epochs: int = 60,
        batch_size: int = 16,
        learning_rate: float = 0.01,
        dropout: float = 0.1,
        seed: int = 42,
        device: str = "auto",
    ):
        self.language = language
        self.hidden_size = hidden_size
        self.epochs = epochs
        self.batch_size = batch_size
        self.learning_rate = learning_rate
        self.dropout = dropout
        self.seed = seed
        self.device = detect_device(device)

        self.vocab: Dict[str, int] = {}
        self.labels: List[str] = []
        self.module: Optional[_BagOfWordsClassifier] = None
        self.token = CancellationToken()

    @classmethod
    def from_config(cls, language: str, config: EngineConfig) -> "IntentNet":
        return cls(
            language,
            hidden_size=config.hidden_size,
            epochs=config.epochs,
            batch_size=config.batch_size,
            learning_rate=config.learning_rate,
            dropout=config.dropout,
            seed=config.seed,
            device=config.device,
        )

    @property
    def is_trained(self) -> bool:
        return self.module is not None

    def cancel(self) -> None:
        self.token.cancel()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _samples(
        self, intents: Sequence[IntentDefinition], entities: Sequence[EntityDefinition]
    ) -> List[tuple]:
        samples = []
        for intent in intents:
            for utterance in intent.utterances.get(self.language, []):
                samples.append((featurize(utterance, entities), intent.name))
        return samples

    def can_warm_start(self, intents: Sequence[IntentDefinition], entities: Sequence[EntityDefinition]) -> bool:
        """True when a retrain keeps the same labels and feature space."""
        if not self.is_trained:
            return False
        if sorted({i.name for i in intents}) != self.labels:
            return False
        vocab = {tok for tokens, _ in self._samples(intents, entities) for tok in tokens}
        return vocab == set(self.vocab)

    def clone(self) -> "IntentNet":
        """Deep copy with a fresh cancellation token."""
        twin = copy.copy(self)
        twin.vocab = dict(self.vocab)
        twin.labels = list(self.labels)
        twin.module = copy.deepcopy(self.module)
        twin.token = CancellationToken()
        return twin

    def _vectorize(self, tokens: Sequence[str]) -> torch.Tensor:
        x = torch.zeros(len(self.vocab))
        for tok in tokens:
            idx = self.vocab.get(tok)
            if idx is not None:
                x[idx] = 1.0
        return x

    def fit(
        self,
        intents: Sequence[IntentDefinition],
        entities: Sequence[EntityDefinition],
        token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> "IntentNet":
        """Train on `intents`. Raises TrainingCanceledError when canceled."""
        token = token or self.token
        self.token = token
        samples = self._samples(intents, entities)
        if not samples:
            raise ValueError(f"No {self.language} utterances to train on")

        generator = torch.Generator().manual_seed(self.seed)
        torch.manual_seed(self.seed)
        if not self.can_warm_start(intents, entities):
            vocab = sorted({tok for tokens, _ in samples for tok in tokens})
            self.vocab = {tok: i for i, tok in enumerate(vocab)}
            self.labels = sorted({i.name for i in intents})
            self.module = _BagOfWordsClassifier(len(self.vocab), self.hidden_size, len(self.labels), self.dropout)
        self.module.to(self.device)

        x = torch.stack([self._vectorize(tokens) for tokens, _ in samples]).to(self.device)
        label_index = {name: i for i, name in enumerate(self.labels)}
        y = torch.tensor([label_index[name] for _, name in samples], dtype=torch.long, device=self.device)

        optimizer = torch.optim.Adam(self.module.parameters(), lr=self.learning_rate)
        loss_fn = nn.CrossEntropyLoss()

        self.module.train()
        loss = torch.tensor(0.0)
        for epoch in range(self.epochs):
            order = torch.randperm(len(samples), generator=generator)
            for start in range(0, len(samples), self.batch_size):
                token.throw_if_canceled()
                idx = order[start:start + self.batch_size].to(self.device)
                optimizer.zero_grad()
                loss = loss_fn(self.module(x[idx]), y[idx])
                loss.backward()
                optimizer.step()
            if progress_callback:
                progress_callback((epoch + 1) / self.epochs)

        self.module.eval()
        logger.debug(f"[{self.language}] trained {len(samples)} samples, final loss {loss.item():.4f}")
        return self

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    @torch.no_grad()
    def predict_proba(self, text: str, entities: Sequence[EntityDefinition]) -> Dict[str, float]:
        if self.module is None:
            raise RuntimeError("IntentNet is not trained")
        x = self._vectorize(featurize(text, entities)).unsqueeze(0).to(self.device)
        probs = torch.softmax(self.module(x), dim=-1)[0]
        return {label: float(probs[i].item()) for i, label in enumerate(self.labels)}

    def known_tokens(self) -> set:
        return {tok for tok in self.vocab if not tok.startswith("@")}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def dumps(self) -> bytes:
        if self.module is None:
            raise RuntimeError("Cannot serialize an untrained IntentNet")
        buffer = io.BytesIO()
        torch.save(
            {
                "language": self.language,
                "vocab": list(self.vocab),
                "labels": list(self.labels),
                "hyperparameters": {
                    "hidden_size": self.hidden_size,
                    "epochs": self.epochs,
                    "batch_size": self.batch_size,
                    "learning_rate": self.learning_rate,
                    "dropout": self.dropout,
                    "seed": self.seed,
                },
                "state_dict": {k: v.detach().cpu() for k, v in self.module.state_dict().items()},
            },
            buffer,
        )
        return buffer.getvalue()

    @classmethod
    def loads(cls, blob: bytes, device: str = "auto") -> "IntentNet":
        try:
            payload = torch.load(io.BytesIO(blob), map_location="cpu", weights_only=True)
            hp = payload["hyperparameters"]
            net = cls(payload["language"], device=device, **hp)
            net.vocab = {tok: i for i, tok in enumerate(payload["vocab"])}
            net.labels = list(payload["labels"])
            module = _BagOfWordsClassifier(len(net.vocab), net.hidden_size, len(net.labels), net.dropout)
            module.load_state_dict(payload["state_dict"])
        except Exception as e:
            raise ModelLoadError(f"Corrupt or incompatible model artifact: {e}") from e
        module.to(net.device)
        module.eval()
        net.module = module
        return net
