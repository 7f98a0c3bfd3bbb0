import logging
import math
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.ensemble import RandomForestRegressor

from .base import ModelOutput, Predictor, rank_numbers
from .config import FOREST, FOREST_MODEL_PARAMS, NUMBER_RANGE, PredictionConfig
from .data import Draw
from .exceptions import ModelUnavailableError
from .features import FeatureExtractor

logger = logging.getLogger(__name__)


class TreeEnsembleModel(Predictor):
    """
    Random forest of variance-split regression trees over per-draw feature rows.

    Every tree is fitted on a bootstrap resample and regresses the 90 indicator
    columns, so a leaf holds the column means of its samples. Each tree votes
    for the five highest means at the leaf the latest draw falls into.
    """

    tag = FOREST

    def __init__(self, params: Optional[Dict] = None):
        self.params = dict(FOREST_MODEL_PARAMS)
        if params:
            self.params.update(params)
        self.extractor = FeatureExtractor()
        self.forest: Optional[RandomForestRegressor] = None
        self._lock = threading.RLock()

    @property
    def is_trained(self) -> bool:
        return self.forest is not None

    def build_model(self, n_features: int) -> RandomForestRegressor:
        # ceil(sqrt(n)) candidate features per split; sklearn's "sqrt" rounds down
        max_features = min(n_features, math.ceil(math.sqrt(n_features)))
        return RandomForestRegressor(
            n_estimators=int(self.params["n_trees"]),
            max_depth=int(self.params["max_depth"]),
            min_samples_split=int(self.params["min_leaf_size"]),
            max_features=max_features,
            bootstrap=True,
            random_state=self.params["random_state"],
        )

    def train(self, history: Sequence[Draw]) -> bool:
        if len(history) < 1:
            logger.warning("Forest model: empty history, training skipped.")
            return False

        with self._lock:
            logger.info(f"Training forest of {self.params['n_trees']} trees on {len(history)} draws...")
            rows = self.extractor.draw_feature_rows(history)
            forest = self.build_model(rows.shape[1])
            forest.fit(rows, rows[:, :NUMBER_RANGE])
            self.forest = forest

        logger.info(
            f"Forest trained: {len(forest.estimators_)} trees, "
            f"mean depth {np.mean([t.get_depth() for t in forest.estimators_]):.1f}, "
            f"mean leaves {np.mean([t.get_n_leaves() for t in forest.estimators_]):.1f}."
        )
        return True

    def tree_votes(self, row: np.ndarray) -> List[List[int]]:
        """Top five numbers of the leaf `row` reaches in each tree."""
        x = np.asarray(row, dtype=float).reshape(1, -1)
        return [rank_numbers(tree.predict(x)[0]) for tree in self.forest.estimators_]

    def predict(self, history: Sequence[Draw], config: PredictionConfig) -> ModelOutput:
        with self._lock:
            if not self.is_trained:
                logger.warning("Forest model not trained. Training now...")
                if not self.train(history):
                    raise ModelUnavailableError("Forest model could not be trained.")

            rows = self.extractor.draw_feature_rows(history)
            latest = rows[0] if len(rows) else np.zeros(NUMBER_RANGE + 2)
            ballots = self.tree_votes(latest)

        votes = np.zeros(NUMBER_RANGE)
        for numbers in ballots:
            for num in numbers:
                votes[num - 1] += 1

        numbers = rank_numbers(votes)
        confidence = min(self.params["confidence_cap"], max(0.0, float(votes.max()) / len(ballots)))
        return ModelOutput(numbers=numbers, confidence=confidence, model=self.tag)
