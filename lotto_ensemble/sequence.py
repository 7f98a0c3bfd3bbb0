import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import tensorflow as tf
from tensorflow.keras.layers import LSTM, Dense, Dropout, Input
from tensorflow.keras.models import Model, load_model
from tensorflow.keras.optimizers import Adam

from .base import ModelOutput, Predictor, frequency_fallback, rank_numbers
from .config import NUMBER_RANGE, N_NUMBERS, SEQUENCE, SEQUENCE_MODEL_PARAMS, PredictionConfig
from .data import Draw, order_history
from .exceptions import InsufficientDataError
from .features import indicator_vector
from .tf_runtime import configure_tensorflow, seed_everything

logger = logging.getLogger(__name__)


class SequenceModel(Predictor):
    """
    LSTM over sliding windows of one-hot draws.

    A window holds the L draws preceding a target draw, most recent first;
    the network emits one probability per number for the target.
    """

    tag = SEQUENCE

    def __init__(self, params: Optional[Dict] = None, model_path: Optional[Union[str, Path]] = None):
        self.params = dict(SEQUENCE_MODEL_PARAMS)
        if params:
            self.params.update(params)
        self.sequence_length = int(self.params["sequence_length"])
        self.model_path = Path(model_path) if model_path else None
        self.model = None
        self.is_trained = False
        self.last_loss = None
        self._lock = threading.RLock()
        configure_tensorflow()
        if self.model_path is not None and self.model_path.exists():
            self.load()

    @property
    def min_history(self) -> int:
        return self.sequence_length + 10

    def build_model(self) -> Model:
        inp = Input(shape=(self.sequence_length, NUMBER_RANGE))
        x = LSTM(int(self.params["lstm_units"]))(inp)
        x = Dense(int(self.params["dense_units"]), activation="relu")(x)
        x = Dropout(float(self.params["dropout"]))(x)
        out = Dense(NUMBER_RANGE, activation="sigmoid", name="number_probabilities")(x)

        model = Model(inputs=inp, outputs=out, name="draw_sequence")
        model.compile(
            optimizer=Adam(learning_rate=float(self.params["learning_rate"])),
            loss=tf.keras.losses.BinaryCrossentropy(),
            metrics=["accuracy"],
        )
        return model

    def _draw_vectors(self, history: Sequence[Draw]) -> np.ndarray:
        ordered = order_history(history)
        if not ordered:
            return np.zeros((0, NUMBER_RANGE), dtype=np.float32)
        return np.stack([indicator_vector(d.winning) for d in ordered])

    def _prepare_windows(self, history: Sequence[Draw]) -> Tuple[np.ndarray, np.ndarray]:
        """Windows of L draws and the draw that came right after each one."""
        vectors = self._draw_vectors(history)
        L = self.sequence_length
        windows, targets = [], []
        for i in range(len(vectors) - L):
            windows.append(vectors[i + 1:i + 1 + L])
            targets.append(vectors[i])
        if not windows:
            return (np.zeros((0, L, NUMBER_RANGE), dtype=np.float32),
                    np.zeros((0, NUMBER_RANGE), dtype=np.float32))
        return np.stack(windows), np.stack(targets)

    def _fit(self, history: Sequence[Draw]) -> float:
        """
        Fit a fresh network. It replaces the current one only when its final
        loss is below `acceptable_loss`; otherwise the previous state is kept.
        """
        if len(history) < self.min_history:
            raise InsufficientDataError(self.min_history, len(history), "sequence model training")

        x, y = self._prepare_windows(history)
        seed_everything(self.params["random_state"])
        model = self.build_model()
        result = model.fit(
            x, y,
            epochs=int(self.params["epochs"]),
            batch_size=int(self.params["batch_size"]),
            shuffle=True,
            verbose=0,
        )
        final_loss = float(result.history["loss"][-1])
        self.last_loss = final_loss

        if final_loss >= self.params["acceptable_loss"]:
            logger.warning(
                f"Sequence model short-trained: final loss {final_loss:.4f} "
                f">= {self.params['acceptable_loss']}; network discarded."
            )
            return final_loss

        self.model = model
        self.is_trained = True
        if self.model_path is not None:
            self.save()
        logger.info(f"Sequence model trained: final loss {final_loss:.4f}")
        return final_loss

    def train(self, history: Sequence[Draw]) -> bool:
        logger.info(f"Training sequence model on {len(history)} draws...")
        with self._lock:
            try:
                loss = self._fit(history)
            except InsufficientDataError as e:
                logger.warning(str(e))
                return False
            except Exception as e:
                logger.error(f"Sequence model training failed: {e}", exc_info=True)
                return False
        return loss < self.params["acceptable_loss"]

    def predict_proba(self, history: Sequence[Draw]) -> np.ndarray:
        """Probability per number (index i is number i + 1) for the next draw."""
        vectors = self._draw_vectors(history)
        if len(vectors) < self.sequence_length:
            raise InsufficientDataError(self.sequence_length, len(vectors), "sequence model prediction")
        window = vectors[:self.sequence_length][np.newaxis, ...]
        probs = self.model(window, training=False)
        return np.asarray(probs, dtype=float)[0]

    def _fallback(self, history: Sequence[Draw]) -> ModelOutput:
        return frequency_fallback(history, self.tag, self.params["fallback_confidence"])

    def predict(self, history: Sequence[Draw], config: PredictionConfig) -> ModelOutput:
        with self._lock:
            if not self.is_trained:
                logger.warning("Sequence model not trained. Training now...")
                try:
                    self._fit(history)
                except InsufficientDataError as e:
                    logger.warning(f"{e}; using frequency fallback.")
                    return self._fallback(history)
                except Exception as e:
                    logger.error(f"Sequence model unavailable: {e}", exc_info=True)
                    return self._fallback(history)
                if not self.is_trained:
                    return self._fallback(history)

            try:
                probs = self.predict_proba(history)
            except InsufficientDataError as e:
                logger.warning(f"{e}; using frequency fallback.")
                return self._fallback(history)
            except Exception as e:
                logger.error(f"Sequence prediction failed: {e}", exc_info=True)
                return self._fallback(history)

        ranked = rank_numbers(probs, count=NUMBER_RANGE)
        passing = [n for n in ranked if probs[n - 1] >= config.confidence_threshold]
        selected = passing[:N_NUMBERS] if len(passing) >= N_NUMBERS else ranked[:N_NUMBERS]

        confidence = min(self.params["confidence_cap"], float(np.mean([probs[n - 1] for n in selected])))
        return ModelOutput(numbers=selected, confidence=confidence, model=self.tag)

    def incremental_update(self, history: Sequence[Draw]) -> bool:
        """Fine-tune a trained network on new draws for a few epochs."""
        with self._lock:
            if not self.is_trained or self.model is None:
                return False
            x, y = self._prepare_windows(history)
            if len(x) == 0:
                return False
            try:
                result = self.model.fit(
                    x, y,
                    epochs=int(self.params["incremental_epochs"]),
                    batch_size=4,
                    verbose=0,
                )
            except Exception as e:
                logger.error(f"Incremental update failed: {e}", exc_info=True)
                return False
            self.last_loss = float(result.history["loss"][-1])
            if self.model_path is not None:
                self.save()
        return True

    def save(self, path: Optional[Union[str, Path]] = None) -> bool:
        path = Path(path) if path else self.model_path
        if self.model is None or path is None:
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.model.save(path)
        except Exception as e:
            logger.warning(f"Failed to save sequence model to {path}: {e}")
            return False
        logger.info(f"Sequence model saved to {path}")
        return True

    def load(self, path: Optional[Union[str, Path]] = None) -> bool:
        path = Path(path) if path else self.model_path
        if path is None or not path.exists():
            return False
        try:
            model = load_model(path)
            expected = (self.sequence_length, NUMBER_RANGE)
            if tuple(model.input_shape[1:]) != expected:
                logger.warning(f"Sequence model input shape mismatch: {model.input_shape[1:]} vs {expected}.")
                return False
        except Exception as e:
            logger.warning(f"Failed to load sequence model: {e}")
            return False
        self.model = model
        self.is_trained = True
        logger.info(f"Loaded sequence model from {path}")
        return True
