import argparse
import json
import logging
import sys

from lotto_ensemble.config import (
    DATA_FILE,
    LOGS_DIR,
    MODELS_DIR,
    PREDICTIONS_FILE,
    WEIGHTS_FILE,
    PredictionConfig,
    ensure_directories,
)
from lotto_ensemble.data import DRAW_CATEGORIES, CsvDrawStore
from lotto_ensemble.exceptions import ConfigurationError
from lotto_ensemble.persistence import JsonPredictionStore, JsonWeightStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    ensure_directories()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOGS_DIR / "lotto_ensemble.log"),
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hybrid Lottery Prediction Engine")
    parser.add_argument("--data", default=str(DATA_FILE), help="CSV file with historical draws")
    parser.add_argument("--predictions-file", default=str(PREDICTIONS_FILE), help="JSON store for generated predictions")
    parser.add_argument("--weights-file", default=str(WEIGHTS_FILE), help="JSON store for ensemble weights")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    predict = sub.add_parser("predict", help="Generate a prediction for a category")
    predict.add_argument("category", help="Draw category id")
    predict.add_argument("--model", default="hybrid", help="boost, forest, sequence or hybrid")
    predict.add_argument("--confidence-threshold", type=float, default=0.3)
    predict.add_argument("--lookback-days", type=int, default=30)
    predict.add_argument("--include-machine-numbers", action="store_true")
    predict.add_argument("--no-weight-recent", action="store_true", help="Disable recency weighting")

    for name, help_text in [
        ("train", "Train all sub-models on a category"),
        ("evaluate", "Accuracy of past predictions per model"),
        ("recommend", "Best model for a category"),
        ("adapt", "Update ensemble weights from evaluation"),
        ("settle", "Attach realised numbers to past predictions"),
    ]:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("category", help="Draw category id")

    weights = sub.add_parser("weights", help="Show or reset ensemble weights")
    weights.add_argument("--reset", action="store_true")

    sub.add_parser("categories", help="List draw categories")
    return parser


def build_service(args):
    from lotto_ensemble.sequence import SequenceModel
    from lotto_ensemble.service import PredictionService

    return PredictionService(
        draw_store=CsvDrawStore(args.data),
        prediction_store=JsonPredictionStore(args.predictions_file),
        weight_store=JsonWeightStore(args.weights_file),
        sequence=SequenceModel(model_path=MODELS_DIR / "sequence_model.keras"),
    )


def run(args) -> int:
    if args.command == "categories":
        for c in DRAW_CATEGORIES:
            print(f"{c.id:40s} {c.full_name}")
        return 0

    service = build_service(args)

    if args.command == "predict":
        config = PredictionConfig(
            model=args.model,
            confidence_threshold=args.confidence_threshold,
            lookback_days=args.lookback_days,
            include_machine_numbers=args.include_machine_numbers,
            weight_recent=not args.no_weight_recent,
        )
        prediction = service.generate_prediction(args.category, config)
        if prediction is None:
            print("No prediction: not enough history or model failure (see log).")
            return 1
        print(json.dumps(prediction.to_dict(), indent=4))
        return 0

    if args.command == "train":
        successes = service.train_all(args.category)
        print(f"{successes}/3 models trained")
        return 0 if successes else 1

    if args.command == "evaluate":
        report = service.evaluate(args.category)
        print("\n=== Model Performance ===")
        for model, perf in report.items():
            print(f"{model:10s} accuracy {perf.accuracy:6.2f}% | "
                  f"avg confidence {perf.average_confidence:.3f} | "
                  f"{perf.evaluated_predictions}/{perf.total_predictions} evaluated")
        return 0

    if args.command == "recommend":
        print(service.recommend_model(args.category))
        return 0

    if args.command == "adapt":
        weights = service.adapt_weights(args.category)
        print(json.dumps((weights or service.hybrid.get_weights()).as_dict(), indent=4))
        return 0

    if args.command == "settle":
        print(f"{service.settle_predictions(args.category)} predictions settled")
        return 0

    if args.command == "weights":
        weights = service.hybrid.reset_weights() if args.reset else service.hybrid.get_weights()
        print(json.dumps(weights.as_dict(), indent=4))
        return 0

    raise ConfigurationError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        logger.info(f"=== lotto_ensemble: {args.command} ===")
        return run(args)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2
    except Exception as e:
        logger.error(f"Fatal error: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())

# python3 main.py train "lundi-10h-réveil"
# python3 main.py predict "lundi-10h-réveil" --model hybrid
