import logging
from datetime import date
from typing import Dict, List, Optional, Union

from .base import EnsembleWeights, ModelOutput, Predictor
from .boost import FrequencyBoostModel
from .config import (
    HYBRID,
    MIN_PREDICTION_HISTORY,
    MIN_TRAINING_HISTORY,
    SUB_MODELS,
    PredictionConfig,
)
from .data import Draw, DrawStore, next_draw_date, order_history
from .evaluation import ModelPerformance, best_model, evaluate_predictions, recommend
from .exceptions import InsufficientDataError, PersistenceError
from .forest import TreeEnsembleModel
from .hybrid import HybridAggregator
from .persistence import InMemoryPredictionStore, PredictionStore, WeightStore

logger = logging.getLogger(__name__)


class PredictionService:
    """
    Entry point used by the application: prediction, training, evaluation
    and weight adaptation for one draw category at a time.

    The three sub-models are shared with the hybrid aggregator, so training
    through train_all() also trains what the hybrid path uses.
    """

    def __init__(
        self,
        draw_store: DrawStore,
        prediction_store: Optional[PredictionStore] = None,
        weight_store: Optional[WeightStore] = None,
        boost: Optional[Predictor] = None,
        forest: Optional[Predictor] = None,
        sequence: Optional[Predictor] = None,
        aggregator_params: Optional[Dict] = None,
    ):
        self.draw_store = draw_store
        self.prediction_store = prediction_store if prediction_store is not None else InMemoryPredictionStore()
        if sequence is None:
            from .sequence import SequenceModel
            sequence = SequenceModel()
        self.hybrid = HybridAggregator(
            boost=boost if boost is not None else FrequencyBoostModel(),
            forest=forest if forest is not None else TreeEnsembleModel(),
            sequence=sequence,
            weight_store=weight_store,
            params=aggregator_params,
        )

    @property
    def models(self) -> Dict[str, Predictor]:
        return self.hybrid.predictors

    def _history(self, category_id: str) -> List[Draw]:
        return order_history(self.draw_store.draw_history(category_id))

    @staticmethod
    def _require(history: List[Draw], minimum: int, operation: str):
        if len(history) < minimum:
            raise InsufficientDataError(minimum, len(history), operation)

    def generate_prediction(
        self,
        category_id: str,
        config: Optional[Union[PredictionConfig, Dict]] = None,
        today: Optional[date] = None,
    ) -> Optional[ModelOutput]:
        """
        Predict the next draw of a category with the configured model.
        Returns None when the history is too short or the model fails;
        an unknown model identifier raises ConfigurationError.
        """
        if config is None:
            config = PredictionConfig()
        elif isinstance(config, dict):
            config = PredictionConfig.from_dict(config)
        config = config.validate()

        history = self._history(category_id)
        try:
            self._require(history, MIN_PREDICTION_HISTORY, "prediction")
        except InsufficientDataError as e:
            logger.warning(f"{category_id}: {e}")
            return None

        logger.info(f"Generating {config.model} prediction for {category_id} from {len(history)} draws...")
        try:
            if config.model == HYBRID:
                prediction = self.hybrid.predict(history, config)
            else:
                prediction = self.models[config.model].predict(history, config)
        except Exception as e:
            logger.error(f"Prediction with '{config.model}' failed: {e}", exc_info=True)
            return None

        draw_date = next_draw_date(category_id, today)
        try:
            self.prediction_store.record_prediction(prediction, category_id, draw_date, config.to_dict())
        except PersistenceError as e:
            logger.warning(f"Prediction not recorded: {e}")

        logger.info(f"{config.model} prediction for {draw_date}: {prediction.numbers} "
                    f"(confidence {prediction.confidence:.3f})")
        return prediction

    def train_all(self, category_id: str) -> int:
        """Train the three sub-models; returns how many trained successfully (0 when data is short)."""
        history = self._history(category_id)
        try:
            self._require(history, MIN_TRAINING_HISTORY, "training")
        except InsufficientDataError as e:
            logger.warning(f"{category_id}: {e}")
            return 0

        logger.info(f"Training all models for {category_id} on {len(history)} draws...")
        results = self.hybrid.train(history)
        successes = sum(1 for ok in results.values() if ok)
        if successes:
            logger.info(f"{successes}/{len(results)} models trained successfully: {results}")
        else:
            logger.error(f"No model trained for {category_id}: {results}")
        return successes

    def evaluate(self, category_id: str) -> Dict[str, ModelPerformance]:
        try:
            predictions = self.prediction_store.past_predictions(category_id)
        except PersistenceError as e:
            logger.warning(f"Cannot read past predictions for {category_id}: {e}")
            predictions = []
        return evaluate_predictions(predictions)

    def recommend_model(self, category_id: str) -> str:
        return recommend(self.evaluate(category_id))

    def adapt_weights(self, category_id: str) -> Optional[EnsembleWeights]:
        """Feed the best sub-model's accuracy back into the hybrid weights."""
        best = best_model(self.evaluate(category_id), candidates=SUB_MODELS)
        if best is None:
            logger.info(f"No evaluated predictions for {category_id}; weights unchanged.")
            return None
        return self.hybrid.update_weights(best.model, best.accuracy)

    def update_weights(self, best_model_tag: str, accuracy: float) -> EnsembleWeights:
        return self.hybrid.update_weights(best_model_tag, accuracy)

    def settle_predictions(self, category_id: str) -> int:
        """Attach realised numbers to stored predictions whose draw has taken place."""
        draws_by_date = {}
        for draw in self._history(category_id):
            draws_by_date.setdefault(draw.date, draw)

        settled = 0
        for prediction in self.prediction_store.past_predictions(category_id):
            if prediction.actual_numbers:
                continue
            draw = draws_by_date.get(prediction.draw_date)
            if draw is None:
                continue
            if self.prediction_store.update_actual(prediction.id, draw.winning):
                settled += 1
        logger.info(f"Settled {settled} predictions for {category_id}.")
        return settled
