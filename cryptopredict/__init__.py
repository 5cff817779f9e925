"""Crypto market prediction: model registry, serving cache and GARCH volatility."""

from typing import Any


def main(*args: Any, **kwargs: Any) -> Any:
    """Thin wrapper that defers importing the CLI entrypoint."""
    from .main import main as _main

    return _main(*args, **kwargs)


__all__ = ["main"]
