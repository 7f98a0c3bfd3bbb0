import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import FEATURE_CONFIG, N_NUMBERS, NUMBER_RANGE
from .data import Draw, order_history

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureVector:
    """Per-number statistics over a history. Index i describes number i + 1."""
    frequency: np.ndarray      # (90,) appearance counts
    gaps: np.ndarray           # (90,) draws since last appearance
    cooccurrence: np.ndarray   # (90, 90) symmetric, zero diagonal
    trends: np.ndarray         # (90,) recency-weighted counts
    history_length: int


def indicator_vector(numbers: Sequence[int], number_range: int = NUMBER_RANGE) -> np.ndarray:
    """90-length 0/1 vector with a 1 at each drawn number."""
    vec = np.zeros(number_range, dtype=np.float32)
    for num in numbers:
        if 1 <= num <= number_range:
            vec[num - 1] = 1.0
    return vec


class FeatureExtractor:
    """
    Turns a draw history into frequency, gap, co-occurrence and trend vectors.

    Input may come in any order; it is sorted most-recent-first before any
    recency-based quantity is computed. The extractor holds no state between
    calls.
    """

    def __init__(self, params: Optional[Dict] = None):
        self.params = dict(FEATURE_CONFIG)
        if params:
            self.params.update(params)

    def extract(self, history: Sequence[Draw], include_machine: bool = False) -> FeatureVector:
        ordered = order_history(history)
        number_sets = [self._draw_numbers(d, include_machine) for d in ordered]
        return FeatureVector(
            frequency=self.calculate_frequency(number_sets),
            gaps=self.calculate_gaps(number_sets),
            cooccurrence=self.calculate_cooccurrence(number_sets),
            trends=self.calculate_trends(number_sets),
            history_length=len(ordered),
        )

    @staticmethod
    def _draw_numbers(draw: Draw, include_machine: bool) -> List[int]:
        numbers = list(draw.winning)
        if include_machine and draw.machine:
            numbers.extend(draw.machine)
        return numbers

    def calculate_frequency(self, number_sets: List[List[int]]) -> np.ndarray:
        counts = np.zeros(NUMBER_RANGE)
        for numbers in number_sets:
            for num in numbers:
                counts[num - 1] += 1
        return counts

    def calculate_gaps(self, number_sets: List[List[int]]) -> np.ndarray:
        """Draws since last seen (0 = in the latest draw); unseen numbers get len + 1."""
        total_draws = len(number_sets)
        if total_draws == 0:
            return np.zeros(NUMBER_RANGE)

        gaps = np.full(NUMBER_RANGE, total_draws + 1, dtype=float)
        seen = np.zeros(NUMBER_RANGE, dtype=bool)
        for draws_ago, numbers in enumerate(number_sets):
            for num in numbers:
                if not seen[num - 1]:
                    seen[num - 1] = True
                    gaps[num - 1] = draws_ago
            if seen.all():
                break
        return gaps

    def calculate_cooccurrence(self, number_sets: List[List[int]]) -> np.ndarray:
        matrix = np.zeros((NUMBER_RANGE, NUMBER_RANGE))
        for numbers in number_sets:
            idx = np.unique(np.asarray(numbers, dtype=int) - 1)
            matrix[np.ix_(idx, idx)] += 1
        np.fill_diagonal(matrix, 0)
        return matrix

    def calculate_trends(self, number_sets: List[List[int]]) -> np.ndarray:
        """Linearly decayed counts over the latest `trend_window` draws."""
        trends = np.zeros(NUMBER_RANGE)
        window = min(int(self.params["trend_window"]), len(number_sets))
        for rank in range(window):
            weight = (window - rank) / window
            for num in number_sets[rank]:
                trends[num - 1] += weight
        return trends

    def draw_feature_rows(self, history: Sequence[Draw]) -> np.ndarray:
        """
        One row per draw, most recent first: the winning-number indicator,
        overlap with the chronologically previous draw, and weekday / 7.
        """
        ordered = order_history(history)
        rows = np.zeros((len(ordered), NUMBER_RANGE + 2))
        for i, draw in enumerate(ordered):
            rows[i, :NUMBER_RANGE] = indicator_vector(draw.winning)
            if i + 1 < len(ordered):
                previous = set(ordered[i + 1].winning)
                rows[i, NUMBER_RANGE] = len(previous & set(draw.winning)) / N_NUMBERS
            rows[i, NUMBER_RANGE + 1] = draw.date.weekday() / 7
        return rows
