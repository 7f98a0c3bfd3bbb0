import json
import logging
import os
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .base import EnsembleWeights, ModelOutput
from .config import PREDICTIONS_FILE, WEIGHTS_FILE, canonical_model_tag
from .exceptions import ConfigurationError, PersistenceError

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload) -> None:
    """Write JSON next to the target, then swap it in with os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, indent=4)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _read_json(path: Path):
    with open(path, "r") as f:
        return json.load(f)


# --- Ensemble weights -------------------------------------------------------

class WeightStore(ABC):
    """Durable home for the aggregator's base weights."""

    @abstractmethod
    def load(self) -> Optional[EnsembleWeights]:
        """Stored weights, or None when nothing has been saved yet."""

    @abstractmethod
    def save(self, weights: EnsembleWeights) -> None:
        pass


class InMemoryWeightStore(WeightStore):
    def __init__(self, weights: Optional[EnsembleWeights] = None):
        self.weights = weights
        self.saves = 0

    def load(self) -> Optional[EnsembleWeights]:
        return self.weights

    def save(self, weights: EnsembleWeights) -> None:
        self.weights = weights
        self.saves += 1


class JsonWeightStore(WeightStore):
    def __init__(self, file_path: Union[str, Path] = WEIGHTS_FILE):
        self.file_path = Path(file_path)

    def load(self) -> Optional[EnsembleWeights]:
        if not self.file_path.exists():
            return None
        try:
            return EnsembleWeights.from_dict(_read_json(self.file_path))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot load weights from {self.file_path}: {e}") from e

    def save(self, weights: EnsembleWeights) -> None:
        try:
            _atomic_write_json(self.file_path, weights.as_dict())
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Cannot save weights to {self.file_path}: {e}") from e


# --- Predictions ------------------------------------------------------------

@dataclass
class StoredPrediction:
    id: str
    category_id: str
    draw_date: date
    output: ModelOutput
    actual_numbers: Optional[List[int]] = None
    config: Dict = field(default_factory=dict)

    @property
    def model(self) -> str:
        return self.output.model

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "draw_date": self.draw_date.isoformat(),
            "output": self.output.to_dict(),
            "actual_numbers": self.actual_numbers,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, values: Dict) -> "StoredPrediction":
        output = ModelOutput.from_dict(values["output"])
        try:
            output.model = canonical_model_tag(output.model)
        except ConfigurationError:
            pass
        actual = values.get("actual_numbers")
        return cls(
            id=values["id"],
            category_id=values["category_id"],
            draw_date=date.fromisoformat(values["draw_date"]),
            output=output,
            actual_numbers=[int(n) for n in actual] if actual else None,
            config=values.get("config") or {},
        )


class PredictionStore(ABC):
    """Sink for generated predictions and source of past ones for evaluation."""

    @abstractmethod
    def record_prediction(
        self,
        output: ModelOutput,
        category_id: str,
        draw_date: date,
        config: Optional[Dict] = None,
    ) -> StoredPrediction:
        pass

    @abstractmethod
    def past_predictions(self, category_id: str) -> List[StoredPrediction]:
        pass

    @abstractmethod
    def update_actual(self, prediction_id: str, actual_numbers: Sequence[int]) -> bool:
        """Attach the realised numbers to a stored prediction."""


class InMemoryPredictionStore(PredictionStore):
    def __init__(self, predictions: Optional[List[StoredPrediction]] = None):
        self.predictions: List[StoredPrediction] = list(predictions or [])
        self._lock = threading.Lock()

    def record_prediction(self, output, category_id, draw_date, config=None) -> StoredPrediction:
        stored = StoredPrediction(
            id=uuid.uuid4().hex,
            category_id=category_id,
            draw_date=draw_date,
            output=output,
            config=dict(config or {}),
        )
        with self._lock:
            self.predictions.append(stored)
        return stored

    def past_predictions(self, category_id: str) -> List[StoredPrediction]:
        with self._lock:
            return [p for p in self.predictions if p.category_id == category_id]

    def update_actual(self, prediction_id: str, actual_numbers: Sequence[int]) -> bool:
        with self._lock:
            for p in self.predictions:
                if p.id == prediction_id:
                    p.actual_numbers = sorted(int(n) for n in actual_numbers)
                    return True
        return False


class JsonPredictionStore(PredictionStore):
    """All predictions in a single JSON list, rewritten on every change."""

    def __init__(self, file_path: Union[str, Path] = PREDICTIONS_FILE):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def _load_all(self) -> List[StoredPrediction]:
        if not self.file_path.exists():
            return []
        try:
            return [StoredPrediction.from_dict(p) for p in _read_json(self.file_path)]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Cannot read predictions from {self.file_path}: {e}") from e

    def _save_all(self, predictions: List[StoredPrediction]) -> None:
        try:
            _atomic_write_json(self.file_path, [p.to_dict() for p in predictions])
        except (OSError, TypeError) as e:
            raise PersistenceError(f"Cannot write predictions to {self.file_path}: {e}") from e

    def record_prediction(self, output, category_id, draw_date, config=None) -> StoredPrediction:
        stored = StoredPrediction(
            id=uuid.uuid4().hex,
            category_id=category_id,
            draw_date=draw_date,
            output=output,
            config=dict(config or {}),
        )
        with self._lock:
            predictions = self._load_all()
            predictions.append(stored)
            self._save_all(predictions)
        return stored

    def past_predictions(self, category_id: str) -> List[StoredPrediction]:
        with self._lock:
            return [p for p in self._load_all() if p.category_id == category_id]

    def update_actual(self, prediction_id: str, actual_numbers: Sequence[int]) -> bool:
        with self._lock:
            predictions = self._load_all()
            for p in predictions:
                if p.id == prediction_id:
                    p.actual_numbers = sorted(int(n) for n in actual_numbers)
                    self._save_all(predictions)
                    return True
        return False
