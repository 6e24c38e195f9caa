#!/usr/bin/env python3
"""
Command line entry point for the efficiency weighting engine.

Usage:
    python scripts/run_engine.py weights --season 2024
    python scripts/run_engine.py history --season 2024 --limit 5
    python scripts/run_engine.py regress --season 2024            # Analysis only
    python scripts/run_engine.py regress --season 2024 --apply    # Record new weights
    python scripts/run_engine.py predict --season 2024 --home Georgia --away Alabama
    python scripts/run_engine.py trace --season 2024 --home Georgia --away Alabama
    python scripts/run_engine.py evaluate --season 2024
    python scripts/run_engine.py reset --season 2024 --reason "Bad regression run"
    python scripts/run_engine.py set --season 2024 --weight turnover_margin=0.4 \\
        --reason "Turnover emphasis for bowl season"

Team-game data is read from TEAM_GAMES_CSV (or --data). Weight history lives
under WEIGHT_STORE_DIR, one JSON file per season.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config.settings import get_settings
from src.data.team_stats import InsufficientDataError, StatsRepository
from src.models.regression import InsufficientSampleSizeError
from src.predictions.engine import PredictionEngine
from src.weights.prediction_weights import WeightValidationError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_weight_assignment(text: str) -> tuple[str, float]:
    """Parse CATEGORY=VALUE."""
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"Expected CATEGORY=VALUE, got '{text}'")
    category, value = text.split("=", 1)
    try:
        return category.strip(), float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Weight for {category} is not a number: '{value}'")


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Opponent-relative efficiency and regression-based weighting engine"
    )
    parser.add_argument(
        "--data",
        type=str,
        default=None,
        help="Team-game CSV (default: TEAM_GAMES_CSV from settings)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    def season_parser(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--season", type=int, required=True, help="Season year")
        return sub

    season_parser("weights", "Show current weights for a season")

    history = season_parser("history", "Show weight history, newest first")
    history.add_argument("--limit", type=int, default=10, help="Entries to show (default: 10)")

    regress = season_parser("regress", "Run regression analysis for a season")
    regress.add_argument(
        "--apply",
        action="store_true",
        help="Record the regression-derived weights (falls back on failure)",
    )
    regress.add_argument("--actor", type=str, default=None, help="Who requested the update")

    for name, help_text in (
        ("predict", "Predict one matchup"),
        ("trace", "Predict one matchup with a verified calculation trace"),
    ):
        sub = season_parser(name, help_text)
        sub.add_argument("--home", type=str, required=True, help="Home team")
        sub.add_argument("--away", type=str, required=True, help="Away team")
        sub.add_argument("--neutral", action="store_true", help="Neutral site game")
        if name == "trace":
            sub.add_argument("--game-id", type=str, default=None, help="Game identifier")

    season_parser("evaluate", "Score predictions for every completed game of a season")

    reset = season_parser("reset", "Record the fallback weights as current")
    reset.add_argument("--reason", type=str, required=True, help="Why weights are reset")
    reset.add_argument("--actor", type=str, default=None, help="Who requested the reset")

    manual = season_parser("set", "Manually override some weights")
    manual.add_argument(
        "--weight",
        type=parse_weight_assignment,
        action="append",
        required=True,
        metavar="CATEGORY=VALUE",
        help="Weight to change (repeatable)",
    )
    manual.add_argument("--reason", type=str, required=True, help="Why weights are changed")
    manual.add_argument("--actor", type=str, default=None, help="Who made the change")

    return parser.parse_args()


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(args, engine: PredictionEngine) -> int:
    """Dispatch one subcommand. Returns the process exit code."""
    if args.command == "weights":
        print_json(engine.get_current_weights(args.season).to_dict())

    elif args.command == "history":
        for entry in engine.get_weight_history(args.season, args.limit):
            print(
                f"v{entry.version:<3} {entry.timestamp:%Y-%m-%d %H:%M:%S}  "
                f"{entry.source:<10} total={entry.weights.total:.3f}  {entry.reason}"
            )

    elif args.command == "regress":
        if args.apply:
            outcome = engine.update_weights_from_regression(args.season, args.actor)
            print_json(outcome.to_dict())
            if outcome.fallback_used:
                print(f"\nWeights not updated: {outcome.fallback_reason}")
                return 1
        else:
            print_json(engine.perform_regression_analysis(args.season).to_dict())

    elif args.command == "predict":
        prediction = engine.predict(args.season, args.home, args.away, args.neutral)
        print_json(prediction.to_dict())

    elif args.command == "trace":
        traced = engine.trace_and_validate(
            args.season, args.home, args.away, args.game_id, args.neutral
        )
        print_json(traced.report.to_dict())
        return 0 if traced.report.is_valid else 1

    elif args.command == "evaluate":
        print_json(engine.evaluate_season(args.season).to_dict())

    elif args.command == "reset":
        entry = engine.weight_manager.reset_to_fallback(args.season, args.reason, args.actor)
        print(f"Season {args.season} reset to fallback weights (v{entry.version})")

    elif args.command == "set":
        entry = engine.weight_manager.update_manually(
            args.season, dict(args.weight), args.reason, args.actor
        )
        print(f"Season {args.season} weights updated (v{entry.version})")
        print_json(entry.weights.to_dict())

    return 0


def main():
    """Main entry point."""
    args = parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = get_settings()
    data_path = args.data or settings.team_games_path

    try:
        repository = StatsRepository.from_csv(data_path)
        engine = PredictionEngine.from_settings(repository, settings)
        exit_code = run_command(args, engine)
    except (InsufficientDataError, InsufficientSampleSizeError) as e:
        logger.error(f"Not enough data: {e}")
        sys.exit(1)
    except (WeightValidationError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
