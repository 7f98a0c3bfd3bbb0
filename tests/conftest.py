import time
from datetime import date, timedelta

import numpy as np
import pytest

from lotto_ensemble.base import ModelOutput, Predictor
from lotto_ensemble.data import Draw, InMemoryDrawStore

HOT_NUMBERS = [7, 23, 45, 61, 88]
CATEGORY = "lundi-10h-réveil"


def make_draws(rows, start=date(2024, 1, 1), step_days=1, machine_rows=None):
    """Draws from oldest to newest, one every `step_days`."""
    draws = []
    for i, numbers in enumerate(rows):
        machine = machine_rows[i] if machine_rows else None
        draws.append(Draw(
            id=f"d{i}",
            date=start + timedelta(days=i * step_days),
            winning=tuple(numbers),
            machine=tuple(machine) if machine else None,
        ))
    return draws


def random_rows(n, seed=0):
    rng = np.random.default_rng(seed)
    return [sorted(rng.choice(np.arange(1, 91), size=5, replace=False).tolist()) for _ in range(n)]


def hot_rows(n, hot=7, seed=0):
    """Every row contains `hot` plus four random other numbers."""
    rng = np.random.default_rng(seed)
    others = [x for x in range(1, 91) if x != hot]
    return [sorted([hot] + rng.choice(others, size=4, replace=False).tolist()) for _ in range(n)]


@pytest.fixture
def constant_history():
    return make_draws([HOT_NUMBERS] * 60)


@pytest.fixture
def random_history():
    return make_draws(random_rows(40))


@pytest.fixture
def store_factory():
    def _factory(draws, category=CATEGORY):
        return InMemoryDrawStore({category: draws})
    return _factory


class StubPredictor(Predictor):
    """Predictor returning a fixed output, raising, or sleeping first."""

    def __init__(self, tag, numbers=None, confidence=0.5, error=None, delay=0.0):
        self.tag = tag
        self.numbers = numbers
        self.confidence = confidence
        self.error = error
        self.delay = delay
        self.predict_calls = 0
        self.train_calls = 0

    def train(self, history):
        self.train_calls += 1
        if self.error is not None:
            raise self.error
        return True

    def predict(self, history, config):
        self.predict_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ModelOutput(numbers=self.numbers, confidence=self.confidence, model=self.tag)


@pytest.fixture
def stub():
    return StubPredictor
