"""
Gateway implementations (lazy imports).
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict

from .gateway import MarketGateway

# Map gateway modes to (module, class) for lazy import
_AVAILABLE: Dict[str, tuple[str, str]] = {
    "paper": ("app.exchange.simulated_gateway", "SimulatedGateway"),
    "testnet": ("app.exchange.live_ccxt_gateway", "LiveCcxtGateway"),
}


def create_gateway(mode: str, settings: Dict[str, Any] | None = None) -> MarketGateway:
    """
    Creates a gateway for the given mode.

    ``settings`` is the ``gateway`` section of the engine configuration;
    only the testnet gateway reads it.
    """
    name = (mode or "").lower()
    if name not in _AVAILABLE:
        raise ValueError(f"Unsupported gateway mode: {mode}")
    mod_name, cls_name = _AVAILABLE[name]
    cls = getattr(import_module(mod_name), cls_name)
    if name == "paper":
        return cls()
    settings = settings or {}
    return cls(
        settings.get("exchange_id", "binance"),
        sandbox=bool(settings.get("sandbox", True)),
        timeout_ms=int(settings.get("timeout_ms", 10000)),
        max_retries=int(settings.get("max_retries", 3)),
    )
