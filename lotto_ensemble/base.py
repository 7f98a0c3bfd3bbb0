import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import (
    BOOST,
    DEFAULT_ENSEMBLE_WEIGHTS,
    FOREST,
    N_NUMBERS,
    NUMBER_RANGE,
    SEQUENCE,
    SUB_MODELS,
    PredictionConfig,
)
from .data import Draw, order_history

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ModelOutput:
    """Five predicted numbers (ascending) with a confidence in [0, 1]."""
    numbers: List[int]
    confidence: float
    model: str
    generated_at: str = field(default_factory=_now)
    contributions: Dict[str, Dict] = field(default_factory=dict)

    def __post_init__(self):
        self.numbers = sorted(int(n) for n in self.numbers)
        self.confidence = float(min(1.0, max(0.0, self.confidence)))

    def to_dict(self) -> Dict:
        return {
            "numbers": list(self.numbers),
            "confidence": self.confidence,
            "model": self.model,
            "generated_at": self.generated_at,
            "contributions": self.contributions,
        }

    @classmethod
    def from_dict(cls, values: Dict) -> "ModelOutput":
        return cls(
            numbers=values["numbers"],
            confidence=values["confidence"],
            model=values["model"],
            generated_at=values.get("generated_at") or _now(),
            contributions=values.get("contributions") or {},
        )


class Predictor(ABC):
    """Common interface for every sub-model the aggregator drives."""

    tag: str = ""

    @abstractmethod
    def train(self, history: Sequence[Draw]) -> bool:
        """Fit on a history; returns whether training succeeded."""

    @abstractmethod
    def predict(self, history: Sequence[Draw], config: PredictionConfig) -> ModelOutput:
        """Predict the next draw from a history."""


def rank_numbers(scores: np.ndarray, count: int = N_NUMBERS) -> List[int]:
    """
    Numbers (1-based) of the `count` highest scores, best first.
    Equal scores go to the lower number.
    """
    scores = np.asarray(scores, dtype=float)
    numbers = np.arange(1, scores.size + 1)
    order = np.lexsort((numbers, -scores))
    return [int(n) for n in numbers[order[:count]]]


def frequency_fallback(
    history: Sequence[Draw],
    tag: str,
    confidence: float,
    window: Optional[int] = None,
) -> ModelOutput:
    """Plain frequency count: the most frequent five numbers in the (recent) history."""
    recent = order_history(history)
    if window is not None:
        recent = recent[:window]
    counts = np.zeros(NUMBER_RANGE)
    for draw in recent:
        for num in draw.winning:
            counts[num - 1] += 1
    logger.info(f"Frequency fallback for '{tag}' over {len(recent)} draws.")
    return ModelOutput(numbers=rank_numbers(counts), confidence=confidence, model=tag)


@dataclass(frozen=True)
class EnsembleWeights:
    """Base vote weights of the three sub-models; non-negative and summing to 1."""
    boost: float = DEFAULT_ENSEMBLE_WEIGHTS[BOOST]
    forest: float = DEFAULT_ENSEMBLE_WEIGHTS[FOREST]
    sequence: float = DEFAULT_ENSEMBLE_WEIGHTS[SEQUENCE]

    def as_dict(self) -> Dict[str, float]:
        return {BOOST: self.boost, FOREST: self.forest, SEQUENCE: self.sequence}

    @property
    def total(self) -> float:
        return self.boost + self.forest + self.sequence

    def normalized(self) -> "EnsembleWeights":
        total = self.total
        if total <= 0:
            return EnsembleWeights()
        return EnsembleWeights(self.boost / total, self.forest / total, self.sequence / total)

    @classmethod
    def from_dict(cls, values: Dict) -> "EnsembleWeights":
        """Build from a mapping; raises ValueError on missing, negative or all-zero weights."""
        try:
            weights = {tag: float(values[tag]) for tag in SUB_MODELS}
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed ensemble weights: {values!r}") from e
        if any(not math.isfinite(w) or w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
            raise ValueError(f"Invalid ensemble weights: {weights}")
        result = cls(**weights)
        if abs(result.total - 1.0) > 1e-9:
            result = result.normalized()
        return result
