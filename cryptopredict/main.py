"""Command-line entry point for the cryptopredict serving layer."""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from typing import Dict, List, Optional

from cryptopredict.config import AppConfig, get_config, get_symbol_universe
from cryptopredict.data import PriceHistoryProvider
from cryptopredict.serving.engine import build_engine
from cryptopredict.serving.schemas import ModelKind, PredictionRequest
from cryptopredict.training import train_price_model

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("cryptopredict")


def configure_logging(log_level: str, debug: bool) -> None:
    """Configure root logger level once CLI arguments are known."""
    level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)
    logging.getLogger().setLevel(level)
    logger.setLevel(level)
    logger.debug("Logging configured | level=%s debug=%s", logging.getLevelName(level), debug)


def _parse_feature(raw: str) -> tuple:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"Features must look like name=value, got '{raw}'.")
    try:
        return key.strip(), float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Feature '{key}' is not numeric: '{value}'.") from exc


def parse_args(config: AppConfig, argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="cryptopredict model registry and serving CLI")
    parser.add_argument("--model-dir", default=None, help="Registry root (default: CRYPTOPREDICT_MODEL_DIR).")
    parser.add_argument("--data-cache-dir", default=config.data_cache_dir, help="Directory with {symbol}/{timeframe}.csv history.")
    parser.add_argument("--output", default=None, help="Optional file for the JSON result.")
    parser.add_argument("--debug", action="store_true", help="Enable verbose DEBUG logging output.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR).")
    commands = parser.add_subparsers(dest="command", required=True)

    volatility = commands.add_parser("volatility", help="Fit GARCH(1,1) on cached closes and forecast volatility.")
    volatility.add_argument("--symbol", required=True)
    volatility.add_argument("--timeframe", default=config.default_timeframe)
    volatility.add_argument("--horizon", type=float, default=3600.0, help="Forecast horizon in seconds.")
    volatility.add_argument("--csv", default=None, help="Explicit CSV path with a close column.")
    volatility.add_argument("--backend", choices=["native", "arch"], default=config.garch.backend)
    volatility.add_argument("--max-points", type=int, default=None)

    predict = commands.add_parser("predict", help="Serve one prediction from request features.")
    predict.add_argument("--symbol", required=True)
    predict.add_argument("--kind", choices=[kind.value for kind in ModelKind], default=ModelKind.PRICE.value)
    predict.add_argument("--horizon", type=float, default=3600.0, help="Time horizon in seconds.")
    predict.add_argument("--feature", "-f", action="append", type=_parse_feature, default=[], metavar="NAME=VALUE")

    train = commands.add_parser("train", help="Train and register a price model from cached history.")
    train.add_argument("--symbol", required=True)
    train.add_argument("--timeframe", default=config.default_timeframe)
    train.add_argument("--model", default=config.serving.default_model, help="Price model type (linear, mlp).")
    train.add_argument("--epochs", type=int, default=1000)
    train.add_argument("--learning-rate", type=float, default=1e-3)
    train.add_argument("--horizon-steps", type=int, default=1)
    train.add_argument("--csv", default=None)
    train.add_argument("--no-progress", action="store_true")

    registry = commands.add_parser("registry", help="Inspect or modify the model registry.")
    registry_commands = registry.add_subparsers(dest="registry_command", required=True)
    listing = registry_commands.add_parser("list", help="List registered versions.")
    listing.add_argument("--symbol", default=None, help="Only models of this asset.")
    deletion = registry_commands.add_parser("delete", help="Delete every model of an asset.")
    deletion.add_argument("--symbol", required=True)
    registry_commands.add_parser("verify", help="Report missing artifacts and orphaned files.")

    warmup = commands.add_parser("warmup", help="Load serving models for the configured symbol universe.")
    warmup.add_argument("--symbols", nargs="+", default=None)

    return parser.parse_args(argv)


def _emit(payload: object, output: Optional[str]) -> None:
    json_output = json.dumps(payload, indent=2, default=str)
    if output:
        with open(output, "w", encoding="utf-8") as handle:
            handle.write(json_output)
        logger.info("Results written to %s", output)
    else:
        print(json_output)


def run_volatility(config: AppConfig, args: argparse.Namespace) -> Dict[str, object]:
    config = dataclasses.replace(config, garch=dataclasses.replace(config.garch, backend=args.backend))
    provider = PriceHistoryProvider(args.data_cache_dir)
    closes = provider.load_closes(args.symbol, args.timeframe, path=args.csv, max_points=args.max_points)
    engine = build_engine(config, args.model_dir)
    prediction = engine.predict_volatility_series(args.symbol, closes.to_numpy(), args.horizon)
    return prediction.to_dict()


def run_predict(config: AppConfig, args: argparse.Namespace) -> Dict[str, object]:
    request = PredictionRequest(
        symbol=args.symbol,
        time_horizon=args.horizon,
        features=dict(args.feature),
        model_type=ModelKind(args.kind),
    )
    engine = build_engine(config, args.model_dir)
    return engine.predict(request).to_dict()


def run_train(config: AppConfig, args: argparse.Namespace) -> Dict[str, object]:
    engine = build_engine(config, args.model_dir)
    provider = PriceHistoryProvider(args.data_cache_dir)
    frame = provider.load_frame(args.symbol, args.timeframe, path=args.csv)
    version = train_price_model(
        args.symbol,
        args.timeframe,
        engine,
        model_type=args.model,
        price_frame=frame,
        epochs=args.epochs,
        learning_rate=args.learning_rate,
        horizon_steps=args.horizon_steps,
        show_progress=not args.no_progress,
    )
    return version.to_dict()


def run_registry(config: AppConfig, args: argparse.Namespace) -> Dict[str, object]:
    registry = build_engine(config, args.model_dir).cache.registry
    if args.registry_command == "list":
        if args.symbol:
            versions = registry.list_models(args.symbol)
        else:
            versions = [entry for model_id in registry.model_ids() for entry in registry.list_versions(model_id)]
        return {"versions": [entry.to_dict() for entry in versions]}
    if args.registry_command == "delete":
        return {"symbol": args.symbol, "deletedModelIds": registry.delete_models(args.symbol)}
    report = registry.verify()
    return {
        "consistent": report.consistent,
        "missingArtifacts": [entry.to_dict() for entry in report.missing_artifacts],
        "orphanedFiles": report.orphaned_files,
    }


def run_warmup(config: AppConfig, args: argparse.Namespace) -> Dict[str, object]:
    symbols = args.symbols or get_symbol_universe().symbols
    engine = build_engine(config, args.model_dir)
    return {"sources": dict(engine.cache.warmup(symbols))}


COMMANDS = {
    "volatility": run_volatility,
    "predict": run_predict,
    "train": run_train,
    "registry": run_registry,
    "warmup": run_warmup,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Entrypoint."""
    config = get_config()
    args = parse_args(config, argv)
    configure_logging(args.log_level, args.debug)
    logger.debug("Arguments: %s", vars(args))

    result = COMMANDS[args.command](config, args)
    _emit(result, args.output)
    if args.command == "registry" and args.registry_command == "verify" and not result["consistent"]:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
