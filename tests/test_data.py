from datetime import date, datetime

import pytest

from lotto_ensemble.config import PredictionConfig, canonical_model_tag
from lotto_ensemble.data import (
    DRAW_CATEGORIES,
    CsvDrawStore,
    Draw,
    InMemoryDrawStore,
    get_category,
    next_draw_date,
)
from lotto_ensemble.exceptions import ConfigurationError, InvalidDrawError, PersistenceError

from conftest import CATEGORY, make_draws


@pytest.mark.parametrize("numbers", [
    (1, 2, 3, 4),
    (1, 2, 3, 4, 4),
    (0, 2, 3, 4, 5),
    (1, 2, 3, 4, 91),
    ("a", 2, 3, 4, 5),
])
def test_invalid_draw_numbers_rejected(numbers):
    with pytest.raises(InvalidDrawError):
        Draw(id="x", date=date(2024, 1, 1), winning=numbers)


def test_draw_normalises_values():
    draw = Draw(id="x", date=datetime(2024, 1, 1, 10, 0), winning=[5, 4, 3, 2, 1], machine=["10", 20, 30, 40, 50])
    assert draw.date == date(2024, 1, 1)
    assert draw.winning == (5, 4, 3, 2, 1)
    assert draw.machine == (10, 20, 30, 40, 50)


def test_in_memory_store_returns_latest_first():
    draws = make_draws([[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]])
    store = InMemoryDrawStore({CATEGORY: draws})
    assert [d.id for d in store.draw_history(CATEGORY)] == ["d1", "d0"]
    assert store.draw_history("unknown") == []


def test_schedule_has_four_draws_a_day():
    assert len(DRAW_CATEGORIES) == 28
    assert len({c.id for c in DRAW_CATEGORIES}) == 28
    category = get_category(CATEGORY)
    assert category.weekday == 0
    assert category.full_name == "Lundi 10H - Réveil"
    assert get_category("lundi-18h15-monday-special").label == "Monday Special"


def test_next_draw_date_is_strictly_after():
    monday = date(2024, 1, 1)
    assert next_draw_date(CATEGORY, monday) == date(2024, 1, 8)
    assert next_draw_date("mercredi-13h-fortune", monday) == date(2024, 1, 3)
    assert next_draw_date("no-such-category", monday) == date(2024, 1, 2)


def test_csv_store_skips_malformed_rows(tmp_path):
    path = tmp_path / "draws.csv"
    path.write_text(
        "category,id,date,winning,machine\n"
        f"{CATEGORY},a,2024-01-01,1 2 3 4 5,10 20 30 40 50\n"
        f"{CATEGORY},b,2024-01-08,\"6,7,8,9,10\",\n"
        f"{CATEGORY},c,2024-01-15,1 2 3,\n"
        f"{CATEGORY},d,not-a-date,1 2 3 4 5,\n"
        "mardi-10h-la-matinale,e,2024-01-02,11 12 13 14 15,\n"
    )
    store = CsvDrawStore(path)
    history = store.draw_history(CATEGORY)

    assert [d.id for d in history] == ["b", "a"]
    assert history[1].machine == (10, 20, 30, 40, 50)
    assert history[0].machine is None
    assert len(store.draw_history("mardi-10h-la-matinale")) == 1


def test_csv_store_missing_file_is_empty(tmp_path):
    assert CsvDrawStore(tmp_path / "absent.csv").draw_history(CATEGORY) == []


def test_csv_store_requires_columns(tmp_path):
    path = tmp_path / "draws.csv"
    path.write_text("id,date\na,2024-01-01\n")
    with pytest.raises(PersistenceError):
        CsvDrawStore(path).draw_history(CATEGORY)


def test_prediction_config_clamps_out_of_range_values():
    config = PredictionConfig(confidence_threshold=1.5, lookback_days=1000).validate()
    assert config.confidence_threshold == 1.0
    assert config.lookback_days == 365

    config = PredictionConfig(confidence_threshold=-0.2, lookback_days=2).validate()
    assert config.confidence_threshold == 0.0
    assert config.lookback_days == 7

    assert PredictionConfig(confidence_threshold=float("nan")).validate().confidence_threshold == 0.3


def test_prediction_config_from_dict_ignores_unknown_keys():
    config = PredictionConfig.from_dict({"model": "LSTM", "weight_recent": False, "colour": "blue"})
    assert config.model == "sequence"
    assert config.weight_recent is False
    assert PredictionConfig.from_dict(config.to_dict()) == config


@pytest.mark.parametrize("alias,tag", [("xgboost", "boost"), ("random_forest", "forest"), ("Hybrid", "hybrid")])
def test_model_aliases(alias, tag):
    assert canonical_model_tag(alias) == tag


def test_unknown_model_rejected():
    with pytest.raises(ConfigurationError):
        PredictionConfig(model="oracle").validate()


@pytest.mark.parametrize("lookback,expected", [
    (float("inf"), 365),
    (float("-inf"), 7),
    (float("nan"), 30),
    (10 ** 400, 30),
    ("45", 45),
    (None, 30),
])
def test_lookback_days_never_rejected(lookback, expected):
    assert PredictionConfig(lookback_days=lookback).validate().lookback_days == expected


def test_infinite_threshold_is_clamped():
    assert PredictionConfig(confidence_threshold=float("inf")).validate().confidence_threshold == 1.0
    assert PredictionConfig(confidence_threshold=float("-inf")).validate().confidence_threshold == 0.0
