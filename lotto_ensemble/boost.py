import logging
import threading
from typing import Dict, Optional, Sequence

import numpy as np

from .base import ModelOutput, Predictor, rank_numbers
from .config import BOOST, BOOST_MODEL_PARAMS, FEATURE_CONFIG, NUMBER_RANGE, PredictionConfig
from .data import Draw
from .exceptions import ModelUnavailableError
from .features import FeatureExtractor

logger = logging.getLogger(__name__)


class FrequencyBoostModel(Predictor):
    """
    Per-number (weight, bias) pairs fitted by a simplified boosting loop.

    Each number is scored as weight * frequency + bias; training pulls that
    score towards the number's normalised frequency.
    """

    tag = BOOST

    def __init__(self, params: Optional[Dict] = None, feature_params: Optional[Dict] = None):
        self.params = dict(BOOST_MODEL_PARAMS)
        if params:
            self.params.update(params)
        self.feature_params = dict(FEATURE_CONFIG)
        if feature_params:
            self.feature_params.update(feature_params)
        self.extractor = FeatureExtractor(self.feature_params)
        self.weights, self.biases = self._initial_state()
        self.is_trained = False
        self.last_loss = None
        self._lock = threading.RLock()

    def _initial_state(self):
        rng = np.random.default_rng(self.params["random_state"])
        weights = rng.random(NUMBER_RANGE)
        biases = rng.random(NUMBER_RANGE) * 0.1
        return weights, biases

    @staticmethod
    def _loss(weights, biases, frequency, target) -> float:
        predicted = weights * frequency + biases
        return float(np.mean((predicted - target) ** 2))

    def train(self, history: Sequence[Draw]) -> bool:
        if len(history) < 1:
            logger.warning("Boost model: empty history, training skipped.")
            return False
        with self._lock:
            return self._fit(history)

    def _fit(self, history: Sequence[Draw]) -> bool:
        logger.info(f"Training boost model on {len(history)} draws...")
        features = self.extractor.extract(history)
        frequency = features.frequency
        target = frequency / max(1, len(history))

        weights, biases = self._initial_state()
        lr = float(self.params["learning_rate"])
        bias_scale = float(self.params["bias_scale"])
        tolerance = float(self.params["loss_tolerance"])
        loss = self._loss(weights, biases, frequency, target)

        iterations = 0
        for iterations in range(1, int(self.params["max_iterations"]) + 1):
            if loss < tolerance:
                break
            gradient = 2 * ((weights * frequency + biases) - target)
            new_weights = weights - lr * gradient
            new_biases = biases - lr * gradient * bias_scale
            new_loss = self._loss(new_weights, new_biases, frequency, target)
            if not np.isfinite(new_loss) or new_loss > loss:
                # Step overshot (large raw counts); retry with a smaller rate.
                lr *= 0.5
                continue
            weights, biases, loss = new_weights, new_biases, new_loss

        self.weights, self.biases = weights, biases
        self.last_loss = loss
        self.is_trained = True
        logger.info(f"Boost model trained: loss={loss:.5f} after {iterations} iterations.")
        return True

    def score_numbers(self, history: Sequence[Draw], config: PredictionConfig) -> np.ndarray:
        features = self.extractor.extract(history, include_machine=config.include_machine_numbers)
        scores = self.weights * features.frequency + self.biases
        if config.weight_recent:
            scores = scores * np.exp(-features.gaps / float(self.feature_params["recency_decay"]))
        scores = scores + float(self.feature_params["cooccurrence_smoothing"]) * features.cooccurrence.sum(axis=1)
        return scores

    def predict(self, history: Sequence[Draw], config: PredictionConfig) -> ModelOutput:
        with self._lock:
            if not self.is_trained:
                logger.warning("Boost model not trained. Training now...")
                if not self.train(history):
                    raise ModelUnavailableError("Boost model could not be trained.")
            scores = self.score_numbers(history, config)

        numbers = rank_numbers(scores)
        top_score = scores[numbers[0] - 1]
        fifth_score = scores[numbers[-1] - 1]
        if top_score != 0:
            spread = (top_score - fifth_score) / top_score
        else:
            spread = 0.0
        confidence = min(self.params["confidence_cap"], max(self.params["confidence_floor"], spread))

        return ModelOutput(numbers=numbers, confidence=float(confidence), model=self.tag)
