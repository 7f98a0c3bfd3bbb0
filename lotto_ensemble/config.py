import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Optional

from .exceptions import ConfigurationError

# Lottery Rules
NUMBER_RANGE = 90
N_NUMBERS = 5

# Minimum history lengths
MIN_PREDICTION_HISTORY = 10
MIN_TRAINING_HISTORY = 50

# Model tags
BOOST = "boost"
FOREST = "forest"
SEQUENCE = "sequence"
HYBRID = "hybrid"
SUB_MODELS = (BOOST, FOREST, SEQUENCE)
MODEL_TAGS = SUB_MODELS + (HYBRID,)

# Older tag names still found in stored predictions
MODEL_ALIASES = {
    "xgboost": BOOST,
    "random_forest": FOREST,
    "lstm": SEQUENCE,
}

# File Paths
PROJECT_ROOT = Path(os.environ.get("LOTTO_ENSEMBLE_HOME", Path.cwd())).absolute()
DATA_DIR = PROJECT_ROOT / "lottery_data"
DATA_FILE = DATA_DIR / "draws.csv"
MODELS_DIR = PROJECT_ROOT / "models"
LOGS_DIR = PROJECT_ROOT / "logs"
PREDICTIONS_DIR = PROJECT_ROOT / "predictions"
WEIGHTS_FILE = MODELS_DIR / "ensemble_weights.json"
PREDICTIONS_FILE = PREDICTIONS_DIR / "predictions.json"


def ensure_directories():
    for directory in [DATA_DIR, MODELS_DIR, LOGS_DIR, PREDICTIONS_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


DEFAULT_ENSEMBLE_WEIGHTS = {
    BOOST: 0.40,     # strongest on raw frequency
    FOREST: 0.35,    # picks up number interactions
    SEQUENCE: 0.25,  # temporal patterns
}

FEATURE_CONFIG = {
    "trend_window": 10,
    "recency_decay": 20.0,
    "cooccurrence_smoothing": 0.1,
}

BOOST_MODEL_PARAMS = {
    "learning_rate": 0.01,
    "max_iterations": 100,
    "loss_tolerance": 0.01,
    "bias_scale": 0.1,
    "confidence_floor": 0.1,
    "confidence_cap": 0.95,
    "random_state": 42,
}

FOREST_MODEL_PARAMS = {
    "n_trees": 50,
    "max_depth": 10,
    "min_leaf_size": 5,
    "confidence_cap": 0.95,
    "random_state": 42,
}

SEQUENCE_MODEL_PARAMS = {
    "sequence_length": 10,
    "lstm_units": 64,
    "dense_units": 128,
    "dropout": 0.2,
    "epochs": 50,
    "batch_size": 8,
    "learning_rate": 0.01,
    "acceptable_loss": 0.5,
    "incremental_epochs": 5,
    "fallback_confidence": 0.3,
    "confidence_cap": 0.95,
    "random_state": 42,
}

AGGREGATOR_CONFIG = {
    "fallback_window": 20,
    "fallback_confidence": 0.4,
    "consensus_cap": 0.2,
    "confidence_cap": 0.95,
    "call_timeout": 300.0,  # seconds per sub-model call
}

# Draw schedule: weekday -> {time slot: label}. Weekday order matches date.weekday().
DRAW_SCHEDULE = {
    "Lundi": {"10H": "Réveil", "13H": "Étoile", "16H": "Akwaba", "18H15": "Monday Special"},
    "Mardi": {"10H": "La Matinale", "13H": "Émergence", "16H": "Sika", "18H15": "Lucky Tuesday"},
    "Mercredi": {"10H": "Première Heure", "13H": "Fortune", "16H": "Baraka", "18H15": "Midweek"},
    "Jeudi": {"10H": "Kado", "13H": "Privilège", "16H": "Monni", "18H15": "Fortune Thursday"},
    "Vendredi": {"10H": "Cash", "13H": "Solution", "16H": "Wari", "18H15": "Friday Bonanza"},
    "Samedi": {"10H": "Soutra", "13H": "Diamant", "16H": "Moaye", "18H15": "National"},
    "Dimanche": {"10H": "Bénédiction", "13H": "Prestige", "16H": "Awalé", "18H15": "Espoir"},
}


def canonical_model_tag(model: str) -> str:
    """Map a model identifier (including legacy names) onto one of MODEL_TAGS."""
    tag = str(model).strip().lower()
    tag = MODEL_ALIASES.get(tag, tag)
    if tag not in MODEL_TAGS:
        raise ConfigurationError(f"Unsupported model: {model!r}")
    return tag


@dataclass(frozen=True)
class PredictionConfig:
    """Options recognised by a prediction request."""
    model: str = HYBRID
    confidence_threshold: float = 0.3
    lookback_days: int = 30
    include_machine_numbers: bool = False
    weight_recent: bool = True

    def validate(self) -> "PredictionConfig":
        """
        Return a copy with every field pulled into its valid range.
        Out-of-range values are clamped; an unknown model is rejected.
        """
        model = canonical_model_tag(self.model)

        try:
            threshold = float(self.confidence_threshold)
        except (TypeError, ValueError, OverflowError):
            threshold = PredictionConfig.confidence_threshold
        if math.isnan(threshold):
            threshold = PredictionConfig.confidence_threshold
        threshold = min(1.0, max(0.0, threshold))

        try:
            lookback = float(self.lookback_days)
        except (TypeError, ValueError, OverflowError):
            lookback = PredictionConfig.lookback_days
        if math.isnan(lookback):
            lookback = PredictionConfig.lookback_days
        lookback = int(min(365, max(7, lookback)))

        return replace(
            self,
            model=model,
            confidence_threshold=threshold,
            lookback_days=lookback,
            include_machine_numbers=bool(self.include_machine_numbers),
            weight_recent=bool(self.weight_recent),
        )

    @classmethod
    def from_dict(cls, values: Optional[Dict]) -> "PredictionConfig":
        values = dict(values or {})
        known = {k: values[k] for k in cls.__dataclass_fields__ if k in values}
        return cls(**known).validate()

    def to_dict(self) -> Dict:
        return {
            "model": self.model,
            "confidence_threshold": self.confidence_threshold,
            "lookback_days": self.lookback_days,
            "include_machine_numbers": self.include_machine_numbers,
            "weight_recent": self.weight_recent,
        }
