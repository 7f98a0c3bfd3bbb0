import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .config import DATA_FILE, DRAW_SCHEDULE, N_NUMBERS, NUMBER_RANGE
from .exceptions import InvalidDrawError, PersistenceError

logger = logging.getLogger(__name__)


def _validate_numbers(numbers: Sequence[int], field: str) -> Tuple[int, ...]:
    try:
        values = tuple(int(n) for n in numbers)
    except (TypeError, ValueError):
        raise InvalidDrawError(f"{field} must be integers, got {numbers!r}")
    if len(values) != N_NUMBERS:
        raise InvalidDrawError(f"{field} must hold {N_NUMBERS} numbers, got {len(values)}")
    if len(set(values)) != N_NUMBERS:
        raise InvalidDrawError(f"{field} must be distinct, got {values}")
    if any(n < 1 or n > NUMBER_RANGE for n in values):
        raise InvalidDrawError(f"{field} must lie in 1..{NUMBER_RANGE}, got {values}")
    return values


@dataclass(frozen=True)
class Draw:
    """One recorded draw: winning numbers and optional machine numbers."""
    id: str
    date: date
    winning: Tuple[int, ...]
    machine: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        if isinstance(self.date, datetime):
            object.__setattr__(self, "date", self.date.date())
        object.__setattr__(self, "winning", _validate_numbers(self.winning, "winning"))
        if self.machine is not None:
            object.__setattr__(self, "machine", _validate_numbers(self.machine, "machine"))


def order_history(draws: Iterable[Draw], most_recent_first: bool = True) -> List[Draw]:
    """Sort draws by date; ties keep their incoming order."""
    return sorted(draws, key=lambda d: d.date, reverse=most_recent_first)


# --- Categories -----------------------------------------------------------

@dataclass(frozen=True)
class DrawCategory:
    id: str
    weekday: int  # 0 = Monday
    day_name: str
    time: str
    label: str

    @property
    def full_name(self) -> str:
        return f"{self.day_name} {self.time} - {self.label}"


def _category_id(day_name: str, time: str, label: str) -> str:
    slug = re.sub(r"\s+", "-", label.lower())
    return f"{day_name.lower()}-{time.lower()}-{slug}"


def build_categories(schedule: Dict[str, Dict[str, str]] = DRAW_SCHEDULE) -> List[DrawCategory]:
    categories = []
    for weekday, (day_name, slots) in enumerate(schedule.items()):
        for time, label in slots.items():
            categories.append(DrawCategory(
                id=_category_id(day_name, time, label),
                weekday=weekday,
                day_name=day_name,
                time=time,
                label=label,
            ))
    return categories


DRAW_CATEGORIES = build_categories()
_CATEGORIES_BY_ID = {c.id: c for c in DRAW_CATEGORIES}


def get_category(category_id: str) -> Optional[DrawCategory]:
    return _CATEGORIES_BY_ID.get(category_id)


def next_draw_date(category_id: str, after: Optional[date] = None) -> date:
    """
    Next calendar day strictly after `after` on which the category draws.
    Unknown categories fall back to the following day.
    """
    after = after or date.today()
    category = get_category(category_id)
    if category is None:
        return after + timedelta(days=1)
    days_ahead = (category.weekday - after.weekday()) % 7 or 7
    return after + timedelta(days=days_ahead)


# --- Draw stores ------------------------------------------------------------

class DrawStore(ABC):
    """Read-only source of historical draws per category."""

    @abstractmethod
    def draw_history(self, category_id: str) -> List[Draw]:
        """Draws for one category, most recent first. May be empty."""


class InMemoryDrawStore(DrawStore):
    def __init__(self, draws: Optional[Dict[str, Iterable[Draw]]] = None):
        self._draws = {k: list(v) for k, v in (draws or {}).items()}

    def add(self, category_id: str, draw: Draw):
        self._draws.setdefault(category_id, []).append(draw)

    def draw_history(self, category_id: str) -> List[Draw]:
        return order_history(self._draws.get(category_id, []))


def _parse_numbers(value) -> Optional[List[int]]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    if not text:
        return None
    return [int(x) for x in re.split(r"[\s,;-]+", text) if x]


class CsvDrawStore(DrawStore):
    """
    Draws kept in a CSV file with columns: category, id, date, winning, machine.
    Number columns hold five numbers separated by spaces or commas.
    """

    def __init__(self, file_path: Union[str, Path] = DATA_FILE):
        self.file_path = Path(file_path)
        self.data = None

    def load_data(self) -> pd.DataFrame:
        """Load and parse the draw file once."""
        if self.data is not None:
            return self.data
        if not self.file_path.exists():
            logger.warning(f"Draw file {self.file_path} not found; history is empty.")
            self.data = pd.DataFrame(columns=["category", "draw"])
            return self.data

        try:
            raw = pd.read_csv(self.file_path, dtype=str, keep_default_na=False)
        except Exception as e:
            raise PersistenceError(f"Cannot read draw file {self.file_path}: {e}") from e

        missing = {"category", "date", "winning"} - set(raw.columns)
        if missing:
            raise PersistenceError(f"Draw file is missing columns: {sorted(missing)}")

        rows = []
        skipped = 0
        for idx, row in raw.iterrows():
            try:
                draw = Draw(
                    id=row.get("id") or f"{row['category']}-{row['date']}",
                    date=pd.to_datetime(row["date"]).date(),
                    winning=_parse_numbers(row["winning"]),
                    machine=_parse_numbers(row.get("machine")),
                )
            except (InvalidDrawError, ValueError, TypeError) as e:
                skipped += 1
                logger.warning(f"Skipping malformed draw on line {idx + 2}: {e}")
                continue
            rows.append({"category": row["category"], "draw": draw})

        self.data = pd.DataFrame(rows, columns=["category", "draw"])
        logger.info(f"Successfully loaded {len(self.data)} draws ({skipped} skipped).")
        return self.data

    def draw_history(self, category_id: str) -> List[Draw]:
        data = self.load_data()
        if data.empty:
            return []
        return order_history(data.loc[data["category"] == category_id, "draw"].tolist())
