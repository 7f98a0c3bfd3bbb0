import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import pandas as pd

from .config import HYBRID, MODEL_ALIASES, MODEL_TAGS, N_NUMBERS
from .persistence import StoredPrediction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPerformance:
    model: str
    total_predictions: int
    evaluated_predictions: int
    correct_predictions: int
    accuracy: float
    average_confidence: float


def predictions_frame(predictions: Sequence[StoredPrediction]) -> pd.DataFrame:
    """One row per stored prediction with its match count against the realised draw."""
    rows = []
    for p in predictions:
        actual = set(p.actual_numbers) if p.actual_numbers else None
        rows.append({
            "model": MODEL_ALIASES.get(p.model, p.model),
            "confidence": p.output.confidence,
            "evaluated": actual is not None,
            "matches": len(set(p.output.numbers) & actual) if actual is not None else 0,
        })
    return pd.DataFrame(rows, columns=["model", "confidence", "evaluated", "matches"])


def evaluate_predictions(predictions: Sequence[StoredPrediction]) -> Dict[str, ModelPerformance]:
    """
    Per-model accuracy over past predictions:
    matches / (evaluated predictions * 5) * 100, where only predictions with
    known outcomes count as evaluated. Average confidence covers all of them.
    """
    df = predictions_frame(predictions)
    report = {}
    for model in MODEL_TAGS:
        subset = df[df["model"] == model]
        total = len(subset)
        evaluated = int(subset["evaluated"].sum()) if total else 0
        correct = int(subset.loc[subset["evaluated"], "matches"].sum()) if evaluated else 0
        accuracy = correct / (evaluated * N_NUMBERS) * 100 if evaluated else 0.0
        avg_conf = float(subset["confidence"].mean()) if total else 0.0
        report[model] = ModelPerformance(
            model=model,
            total_predictions=total,
            evaluated_predictions=evaluated,
            correct_predictions=correct,
            accuracy=float(accuracy),
            average_confidence=avg_conf,
        )

    logger.info(
        "Evaluation: "
        + " | ".join(f"{m}: {p.accuracy:.1f}% over {p.evaluated_predictions}/{p.total_predictions}"
                     for m, p in report.items())
    )
    return report


def best_model(report: Dict[str, ModelPerformance], candidates: Sequence[str] = MODEL_TAGS) -> Optional[ModelPerformance]:
    """Highest accuracy among candidates with evaluated predictions; ties keep the earlier tag."""
    best = None
    for model in candidates:
        perf = report.get(model)
        if perf is None or perf.evaluated_predictions == 0:
            continue
        if best is None or perf.accuracy > best.accuracy:
            best = perf
    return best


def recommend(report: Dict[str, ModelPerformance]) -> str:
    best = best_model(report)
    return best.model if best is not None else HYBRID
