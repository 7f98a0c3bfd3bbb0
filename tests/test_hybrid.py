import pytest

from lotto_ensemble.base import EnsembleWeights
from lotto_ensemble.config import PredictionConfig
from lotto_ensemble.exceptions import ModelUnavailableError, PersistenceError
from lotto_ensemble.hybrid import HybridAggregator
from lotto_ensemble.persistence import InMemoryWeightStore, WeightStore

from conftest import HOT_NUMBERS, make_draws, random_rows


class BrokenWeightStore(WeightStore):
    def load(self):
        raise PersistenceError("disk unavailable")

    def save(self, weights):
        raise PersistenceError("disk unavailable")


def _aggregator(stub, boost=None, forest=None, sequence=None, **kwargs):
    failing = ModelUnavailableError("down")
    return HybridAggregator(
        boost=boost or stub("boost", error=failing),
        forest=forest or stub("forest", error=failing),
        sequence=sequence or stub("sequence", error=failing),
        **kwargs,
    )


def test_single_available_model_passes_through(stub, random_history):
    forest = stub("forest", numbers=[3, 14, 15, 90, 65], confidence=0.62)
    agg = _aggregator(stub, forest=forest)

    output = agg.predict(random_history, PredictionConfig())
    assert output.numbers == [3, 14, 15, 65, 90]
    assert output.confidence == pytest.approx(0.62)
    assert output.model == "hybrid"
    assert set(output.contributions) == {"forest"}


def test_all_models_failing_uses_frequency_fallback(stub):
    rows = random_rows(30, seed=9) + [HOT_NUMBERS] * 20
    history = make_draws(rows)
    agg = _aggregator(stub)

    output = agg.predict(history, PredictionConfig())
    assert output.numbers == HOT_NUMBERS
    assert output.confidence == 0.4


def test_fallback_only_counts_last_twenty_draws(stub):
    # 30 older draws of one pattern, 20 recent draws of another
    rows = [[1, 2, 3, 4, 5]] * 30 + [HOT_NUMBERS] * 20
    output = _aggregator(stub).fallback_predict(make_draws(rows))
    assert output.numbers == HOT_NUMBERS


def test_zero_confidence_everywhere_uses_fallback(stub, random_history):
    agg = _aggregator(
        stub,
        boost=stub("boost", numbers=[1, 2, 3, 4, 5], confidence=0.0),
        forest=stub("forest", numbers=[6, 7, 8, 9, 10], confidence=0.0),
    )
    assert agg.predict(random_history, PredictionConfig()).confidence == 0.4


def test_weighted_vote_and_consensus(stub, random_history):
    agg = _aggregator(
        stub,
        boost=stub("boost", numbers=[1, 2, 3, 4, 5], confidence=0.5),
        forest=stub("forest", numbers=[1, 2, 3, 6, 7], confidence=0.5),
        sequence=stub("sequence", numbers=[1, 8, 9, 10, 11], confidence=0.5),
    )
    output = agg.predict(random_history, PredictionConfig())

    # votes: 1 -> 1.0, 2/3 -> 0.75, 4/5 -> 0.40, 6/7 -> 0.35, 8..11 -> 0.25
    assert output.numbers == [1, 2, 3, 4, 5]
    # overlaps 3, 1, 1 -> mean 5/3 -> bonus 5/3 / 5 * 0.2
    assert output.confidence == pytest.approx(0.5 + (5 / 3) / 5 * 0.2)
    assert output.contributions["boost"]["weight"] == pytest.approx(0.40)


def test_vote_ties_go_to_lower_numbers(stub, random_history):
    agg = _aggregator(
        stub,
        boost=stub("boost", numbers=[50, 60, 70, 80, 90], confidence=0.35),
        forest=stub("forest", numbers=[1, 2, 3, 4, 5], confidence=0.40),
    )
    # 0.40 * 0.35 == 0.35 * 0.40, so every number carries the same vote
    output = agg.predict(random_history, PredictionConfig())
    assert output.numbers == [1, 2, 3, 4, 5]


def test_consensus_bonus_is_capped():
    full = [type("O", (), {"numbers": [1, 2, 3, 4, 5]})() for _ in range(3)]
    assert HybridAggregator.consensus_bonus(full) == pytest.approx(0.2)
    assert HybridAggregator.consensus_bonus(full[:1]) == 0.0


def test_adjusted_weights_normalise(stub):
    agg = _aggregator(stub)
    outputs = {
        "boost": stub("boost", numbers=[1, 2, 3, 4, 5], confidence=0.5).predict([], None),
        "forest": None,
        "sequence": stub("sequence", numbers=[1, 2, 3, 4, 5], confidence=0.8).predict([], None),
    }
    weights = agg.adjust_weights(outputs)
    assert weights["forest"] == 0.0
    assert sum(weights.values()) == pytest.approx(1.0)
    assert weights["boost"] == pytest.approx(0.2 / (0.2 + 0.2))


def test_adjusted_weights_when_nothing_available(stub):
    weights = _aggregator(stub).adjust_weights({"boost": None, "forest": None, "sequence": None})
    assert weights == {"boost": 1.0, "forest": 0.0, "sequence": 0.0}


def test_slow_model_times_out(stub, random_history):
    agg = _aggregator(
        stub,
        boost=stub("boost", numbers=[1, 2, 3, 4, 5], confidence=0.5),
        sequence=stub("sequence", numbers=[6, 7, 8, 9, 10], confidence=0.9, delay=1.0),
        params={"call_timeout": 0.1},
    )
    output = agg.predict(random_history, PredictionConfig())
    assert output.numbers == [1, 2, 3, 4, 5]
    assert set(output.contributions) == {"boost"}


def test_invalid_sub_model_output_is_discarded(stub, random_history):
    agg = _aggregator(
        stub,
        boost=stub("boost", numbers=[1, 1, 2, 3, 4], confidence=0.9),
        forest=stub("forest", numbers=[10, 20, 30, 40, 50], confidence=0.3),
    )
    output = agg.predict(random_history, PredictionConfig())
    assert output.numbers == [10, 20, 30, 40, 50]


@pytest.mark.parametrize("best,accuracy", [
    ("boost", 40.0),
    ("forest", 100.0),
    ("sequence", 0.0),
    ("lstm", 75.0),
    ("hybrid", 60.0),
    ("boost", -20.0),
    ("forest", 250.0),
])
def test_update_weights_keeps_weights_normalised(stub, best, accuracy):
    store = InMemoryWeightStore()
    agg = _aggregator(stub, weight_store=store)
    agg.update_weights(best, accuracy)
    weights = agg.get_weights()

    assert sum(weights.as_dict().values()) == pytest.approx(1.0, abs=1e-9)
    assert all(w >= 0 for w in weights.as_dict().values())
    assert store.weights == weights


def test_update_weights_raises_named_model(stub):
    agg = _aggregator(stub, weight_store=InMemoryWeightStore())
    updated = agg.update_weights("sequence", 50.0)

    expected_total = 1.0 + 0.05
    assert updated.sequence == pytest.approx((0.25 + 0.05) / expected_total)
    assert updated.boost == pytest.approx(0.40 / expected_total)


def test_weights_reloaded_from_store(stub):
    saved = EnsembleWeights(0.2, 0.3, 0.5)
    agg = _aggregator(stub, weight_store=InMemoryWeightStore(saved))
    assert agg.get_weights() == saved


def test_broken_store_falls_back_to_defaults_and_survives_saves(stub):
    agg = _aggregator(stub, weight_store=BrokenWeightStore())
    assert agg.get_weights() == EnsembleWeights()

    updated = agg.update_weights("forest", 80.0)
    assert agg.get_weights() == updated
    assert sum(updated.as_dict().values()) == pytest.approx(1.0)


def test_reset_weights(stub):
    store = InMemoryWeightStore(EnsembleWeights(0.1, 0.1, 0.8))
    agg = _aggregator(stub, weight_store=store)
    agg.reset_weights()
    assert agg.get_weights() == EnsembleWeights()
    assert store.weights == EnsembleWeights()


def test_train_counts_each_model_independently(stub, random_history):
    agg = _aggregator(
        stub,
        boost=stub("boost", numbers=[1, 2, 3, 4, 5]),
        forest=stub("forest", numbers=[1, 2, 3, 4, 5]),
    )
    results = agg.train(random_history)
    assert results == {"boost": True, "forest": True, "sequence": False}
