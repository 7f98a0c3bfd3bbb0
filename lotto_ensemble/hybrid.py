import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from itertools import combinations
from typing import Dict, List, Optional, Sequence

from .base import EnsembleWeights, ModelOutput, Predictor, frequency_fallback
from .boost import FrequencyBoostModel
from .config import (
    AGGREGATOR_CONFIG,
    BOOST,
    FOREST,
    HYBRID,
    N_NUMBERS,
    NUMBER_RANGE,
    SEQUENCE,
    SUB_MODELS,
    PredictionConfig,
    canonical_model_tag,
)
from .data import Draw
from .exceptions import ConfigurationError, PersistenceError
from .forest import TreeEnsembleModel
from .persistence import WeightStore

logger = logging.getLogger(__name__)


def _is_valid_output(output) -> bool:
    if not isinstance(output, ModelOutput):
        return False
    numbers = output.numbers
    return (
        len(numbers) == N_NUMBERS
        and len(set(numbers)) == N_NUMBERS
        and all(1 <= n <= NUMBER_RANGE for n in numbers)
        and math.isfinite(output.confidence)
    )


class HybridAggregator:
    """
    Weighted-vote ensemble over the boost, forest and sequence predictors.

    A request fans out to every sub-model at once and tolerates individual
    failures. Each available model's base weight is scaled by its own
    confidence, the result is normalised, and numbers are chosen by summed
    weight. Base weights live in a WeightStore and only change through
    update_weights().
    """

    def __init__(
        self,
        boost: Optional[Predictor] = None,
        forest: Optional[Predictor] = None,
        sequence: Optional[Predictor] = None,
        weight_store: Optional[WeightStore] = None,
        params: Optional[Dict] = None,
    ):
        if sequence is None:
            from .sequence import SequenceModel
            sequence = SequenceModel()
        self.predictors: Dict[str, Predictor] = {
            BOOST: boost if boost is not None else FrequencyBoostModel(),
            FOREST: forest if forest is not None else TreeEnsembleModel(),
            SEQUENCE: sequence,
        }
        self.params = dict(AGGREGATOR_CONFIG)
        if params:
            self.params.update(params)
        self.weight_store = weight_store
        self._weights_lock = threading.Lock()
        self.weights = self._load_weights()

    # --- Weight state -------------------------------------------------------

    def _load_weights(self) -> EnsembleWeights:
        if self.weight_store is None:
            return EnsembleWeights()
        try:
            weights = self.weight_store.load()
        except PersistenceError as e:
            logger.warning(f"Could not load ensemble weights, using defaults: {e}")
            return EnsembleWeights()
        if weights is None:
            logger.info("No saved ensemble weights; using defaults.")
            return EnsembleWeights()
        logger.info(f"Loaded ensemble weights: {weights.as_dict()}")
        return weights

    def _save_weights(self, weights: EnsembleWeights) -> bool:
        if self.weight_store is None:
            return False
        try:
            self.weight_store.save(weights)
        except PersistenceError as e:
            logger.warning(f"Could not persist ensemble weights; skipping this cycle: {e}")
            return False
        return True

    def get_weights(self) -> EnsembleWeights:
        return self.weights

    def reset_weights(self) -> EnsembleWeights:
        with self._weights_lock:
            self.weights = EnsembleWeights()
            self._save_weights(self.weights)
        return self.weights

    def update_weights(self, best_model: str, accuracy: float) -> EnsembleWeights:
        """
        Raise the base weight of `best_model` by 0.1 * accuracy / 100, then
        renormalise and persist. `accuracy` is a percentage, clamped to [0, 100].
        """
        try:
            acc = float(accuracy)
        except (TypeError, ValueError):
            acc = 0.0
        if not math.isfinite(acc):
            acc = 0.0
        acc = min(100.0, max(0.0, acc))

        try:
            tag = canonical_model_tag(best_model)
        except ConfigurationError:
            tag = None

        with self._weights_lock:
            values = self.weights.as_dict()
            if tag in SUB_MODELS:
                values[tag] += 0.1 * (acc / 100)
            else:
                logger.info(f"'{best_model}' has no base weight; renormalising only.")
            updated = EnsembleWeights(**values).normalized()
            self.weights = updated
            self._save_weights(updated)

        logger.info(f"Ensemble weights updated from '{best_model}' ({acc:.1f}%): {updated.as_dict()}")
        return updated

    # --- Prediction -----------------------------------------------------------

    def collect(self, history: Sequence[Draw], config: PredictionConfig) -> Dict[str, Optional[ModelOutput]]:
        """Run every sub-model concurrently; failed or timed-out models map to None."""
        timeout = self.params.get("call_timeout")
        executor = ThreadPoolExecutor(max_workers=len(self.predictors), thread_name_prefix="hybrid")
        try:
            futures = {
                tag: executor.submit(predictor.predict, history, config)
                for tag, predictor in self.predictors.items()
            }
            results = {}
            for tag, future in futures.items():
                try:
                    output = future.result(timeout=timeout)
                except FuturesTimeoutError:
                    logger.warning(f"Sub-model '{tag}' timed out after {timeout}s.")
                    output = None
                except Exception as e:
                    logger.warning(f"Sub-model '{tag}' unavailable: {e}", exc_info=True)
                    output = None
                if output is not None and not _is_valid_output(output):
                    logger.warning(f"Sub-model '{tag}' returned an invalid output: {output!r}")
                    output = None
                results[tag] = output
        finally:
            # A timed-out call keeps running in its worker; predictors serialise
            # their own training and prediction so it cannot interleave with later requests.
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def adjust_weights(self, outputs: Dict[str, Optional[ModelOutput]]) -> Dict[str, float]:
        """Base weight times reported confidence for each available model, normalised."""
        if all(outputs.get(tag) is None for tag in SUB_MODELS):
            return {BOOST: 1.0, FOREST: 0.0, SEQUENCE: 0.0}

        base = self.weights.as_dict()
        adjusted = {}
        for tag in SUB_MODELS:
            output = outputs.get(tag)
            adjusted[tag] = base[tag] * output.confidence if output is not None else 0.0

        total = sum(adjusted.values())
        if total > 0:
            adjusted = {tag: w / total for tag, w in adjusted.items()}
        logger.info(f"Adaptive model weights: {adjusted}")
        return adjusted

    @staticmethod
    def consensus_bonus(outputs: List[ModelOutput], cap: float = 0.2) -> float:
        """Bonus for agreement: mean pairwise overlap / 5 * cap, at most cap."""
        if len(outputs) < 2:
            return 0.0
        overlaps = [len(set(a.numbers) & set(b.numbers)) for a, b in combinations(outputs, 2)]
        average_overlap = sum(overlaps) / len(overlaps)
        return min(cap, average_overlap / N_NUMBERS * cap)

    def aggregate(self, outputs: Dict[str, Optional[ModelOutput]], weights: Dict[str, float]) -> ModelOutput:
        available = {tag: out for tag, out in outputs.items() if out is not None}

        votes: Dict[int, float] = {}
        contributions = {}
        for tag, output in available.items():
            weight = weights.get(tag, 0.0)
            for num in output.numbers:
                votes[num] = votes.get(num, 0.0) + weight
            contributions[tag] = {
                "numbers": list(output.numbers),
                "confidence": output.confidence,
                "weight": weight,
            }

        ranked = sorted(votes.items(), key=lambda item: (-item[1], item[0]))
        numbers = sorted(num for num, _ in ranked[:N_NUMBERS])

        weighted_confidence = sum(weights.get(tag, 0.0) * out.confidence for tag, out in available.items())
        bonus = self.consensus_bonus(list(available.values()), self.params["consensus_cap"])
        confidence = min(self.params["confidence_cap"], weighted_confidence + bonus)

        return ModelOutput(numbers=numbers, confidence=confidence, model=HYBRID, contributions=contributions)

    def fallback_predict(self, history: Sequence[Draw]) -> ModelOutput:
        return frequency_fallback(
            history,
            HYBRID,
            self.params["fallback_confidence"],
            window=self.params["fallback_window"],
        )

    def predict(self, history: Sequence[Draw], config: PredictionConfig) -> ModelOutput:
        try:
            outputs = self.collect(history, config)
            available = [tag for tag, out in outputs.items() if out is not None]
            weights = self.adjust_weights(outputs)
            if not available or sum(weights[tag] for tag in available) == 0:
                logger.warning("No sub-model produced a usable prediction; using frequency fallback.")
                return self.fallback_predict(history)
            return self.aggregate(outputs, weights)
        except Exception as e:
            logger.error(f"Hybrid prediction failed: {e}", exc_info=True)
            return self.fallback_predict(history)

    def train(self, history: Sequence[Draw]) -> Dict[str, bool]:
        """Train every sub-model concurrently; a failure only affects its own entry."""
        executor = ThreadPoolExecutor(max_workers=len(self.predictors), thread_name_prefix="hybrid-train")
        try:
            futures = {tag: executor.submit(p.train, history) for tag, p in self.predictors.items()}
            results = {}
            for tag, future in futures.items():
                try:
                    results[tag] = bool(future.result())
                except Exception as e:
                    logger.error(f"Training '{tag}' failed: {e}", exc_info=True)
                    results[tag] = False
        finally:
            executor.shutdown(wait=True)
        return results
