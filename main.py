"""Punkt wejścia silnika botów CryptoBotDesktop.

Pozwala uruchomić bota w trybie papierowym (`run --mode paper`) lub na
sieci testowej giełdy (`run --mode testnet`), przejrzeć zapisane transakcje
(`trades`), przenieść dane między instalacjami (`export` / `import`)
oraz sprawdzić konfigurację (`check-config`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from typing import Iterable, Optional

from app.exchange import create_gateway
from app.storage import create_store
from core.bot_manager import BotManager, EngineSettings
from core.errors import BotEngineError
from core.strategy_engine import describe_strategies
from utils.config_manager import ConfigManager, ConfigValidationError
from utils.encryption import CredentialVault
from utils.logger import LoggerManager, get_logger

logger = get_logger("main")


def build_manager(config_manager: ConfigManager, mode: str) -> BotManager:
    """Składa BotManager z konfiguracji: logowanie, magazyn, gateway, sejf."""
    LoggerManager.from_config(config_manager.get_setting("logging", {})).setup()
    store = create_store(config_manager.get_setting("storage", {}))
    gateway = create_gateway(mode, config_manager.get_setting("gateway", {}))
    vault = CredentialVault.from_env(config_manager.get_setting("security.vault_key_env", "CRYPTOBOT_VAULT_KEY"))
    return BotManager(gateway, store, settings=EngineSettings.from_config(config_manager), vault=vault)


def _print_event(kind: str):
    def _printer(payload):
        print(f"[{kind}] {json.dumps(payload, ensure_ascii=False)}")
    return _printer


async def _run_bot(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    manager = build_manager(config_manager, args.mode)
    for kind in ("status", "trade-executed", "error"):
        manager.subscribe(kind, _print_event(kind))

    await manager.store.initialize()
    resumed = await manager.recover()
    if resumed:
        logger.info(f"Resumed bots: {', '.join(resumed)}")

    request = {
        "symbol": args.symbol,
        "strategy_id": args.strategy,
        "amount": args.amount,
        "interval": args.interval,
        "take_profit_pct": args.take_profit,
        "stop_loss_pct": args.stop_loss,
        "credentials": {
            "api_key": args.api_key or os.getenv("CRYPTOBOT_API_KEY", "paper-key" if args.mode == "paper" else ""),
            "api_secret": args.api_secret or os.getenv("CRYPTOBOT_API_SECRET", "paper-secret" if args.mode == "paper" else ""),
        },
    }

    try:
        bot_id = await manager.start(request)
        if args.ticks:
            for _ in range(args.ticks):
                await manager.tick(bot_id)
        else:
            print(f"Bot {bot_id} running - press Ctrl+C to stop")
            await asyncio.Event().wait()
    except BotEngineError as e:
        logger.error(f"Bot run failed: {e}")
        return 1
    finally:
        await manager.shutdown()
    return 0


async def _show_trades(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    store = create_store(config_manager.get_setting("storage", {}))
    manager = BotManager(create_gateway("paper"), store)
    try:
        filters = {"symbol": args.symbol, "bot_id": args.bot_id, "limit": args.limit}
        for trade in await manager.list_trades(**filters):
            print(json.dumps(trade.to_dict(), ensure_ascii=False))
        stats = await manager.trade_statistics(symbol=args.symbol, bot_id=args.bot_id)
        print(json.dumps(stats.__dict__, ensure_ascii=False))
    finally:
        await store.close()
    return 0


async def _transfer_data(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    store = create_store(config_manager.get_setting("storage", {}))
    manager = BotManager(create_gateway("paper"), store)
    try:
        if args.command == "export":
            count = await manager.export_data(args.path)
            print(f"Exported {count} records to {args.path}")
        else:
            count = await manager.import_data(args.path)
            print(f"Imported {count} records from {args.path}")
    except (OSError, ValueError) as e:
        logger.error(f"Data {args.command} failed: {e}")
        return 1
    finally:
        await store.close()
    return 0


def _check_config(config_manager: ConfigManager) -> int:
    try:
        config = config_manager.load_config()
    except ConfigValidationError as e:
        print(f"Configuration invalid: {e}")
        return 1
    print(json.dumps(config, indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config-dir", default="config", help="Katalog z engine_config.json")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Uruchom bota")
    run_parser.add_argument("--mode", choices=("paper", "testnet"), default="paper")
    run_parser.add_argument("--symbol", required=True)
    run_parser.add_argument("--strategy", default="crossover")
    run_parser.add_argument("--amount", type=float, required=True)
    run_parser.add_argument("--interval", default="15m")
    run_parser.add_argument("--take-profit", type=float, default=3.0)
    run_parser.add_argument("--stop-loss", type=float, default=2.0)
    run_parser.add_argument("--api-key", help="Klucz API (domyślnie CRYPTOBOT_API_KEY)")
    run_parser.add_argument("--api-secret", help="Sekret API (domyślnie CRYPTOBOT_API_SECRET)")
    run_parser.add_argument(
        "--ticks", type=int, default=0,
        help="Wykonaj podaną liczbę ticków od razu i zakończ (0 = działaj według harmonogramu)",
    )

    trades_parser = subparsers.add_parser("trades", help="Pokaż zapisane transakcje i statystyki")
    trades_parser.add_argument("--symbol")
    trades_parser.add_argument("--bot-id")
    trades_parser.add_argument("--limit", type=int, default=50)

    export_parser = subparsers.add_parser("export", help="Eksportuj konfiguracje, stany i transakcje do JSON")
    export_parser.add_argument("path")
    import_parser = subparsers.add_parser("import", help="Importuj dane z pliku eksportu")
    import_parser.add_argument("path")

    subparsers.add_parser("strategies", help="Wypisz dostępne strategie")
    subparsers.add_parser("check-config", help="Załaduj i zwaliduj konfigurację")

    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    config_manager = ConfigManager(config_dir=args.config_dir)

    if args.command == "check-config":
        return _check_config(config_manager)
    if args.command == "strategies":
        for strategy in describe_strategies():
            print(json.dumps(strategy, ensure_ascii=False))
        return 0

    try:
        config_manager.load_config()
    except ConfigValidationError as e:
        print(f"Configuration invalid: {e}")
        return 1

    if args.command == "trades":
        return asyncio.run(_show_trades(args, config_manager))
    if args.command in ("export", "import"):
        return asyncio.run(_transfer_data(args, config_manager))
    try:
        return asyncio.run(_run_bot(args, config_manager))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    raise SystemExit(main())
