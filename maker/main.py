"""Maker entry point.

Usage:
    python -m maker.main                      # run with configs/config.yaml, venue dry run
    python -m maker.main --live               # send hedge orders for real
    python -m maker.main --config my.yaml     # alternate strategy file
    python -m maker.main --check              # print connection + account status and exit
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
import threading

import config
from maker.bot_service import BotService
from maker.eth_service import EthService
from maker.log import setup_logging
from maker.maker import Maker
from maker.maker_config import load_config
from maker.perp_service import PerpService
from maker.tx_sequencer import TxSequencer
from maker.venue_client import VenueClient

logger = logging.getLogger(__name__)


def _crash(exc_type, exc_value, exc_tb) -> None:
    logger.critical("Uncaught exception, exiting", exc_info=(exc_type, exc_value, exc_tb))
    logging.shutdown()
    os._exit(1)


def install_crash_handlers() -> None:
    """Any uncaught error, on any thread, ends the process with exit code 1."""
    sys.excepthook = _crash
    threading.excepthook = lambda args: _crash(args.exc_type, args.exc_value, args.exc_traceback)


def build_maker(config_path: str, live: bool = False) -> Maker:
    maker_config = load_config(config_path)
    eth_service = EthService("L2", config.WEB3_ENDPOINTS)
    perp_service = PerpService(eth_service, maker_config.contracts)
    sequencer = TxSequencer(eth_service)
    bot_service = BotService(eth_service, perp_service, sequencer)
    venue = VenueClient(dry_run=not live)
    return Maker(eth_service, perp_service, bot_service, venue, maker_config)


def check(maker: Maker) -> None:
    block_number, latency = maker.eth_service.check_block_number_with_latency()
    print(f"Endpoint:       {maker.eth_service.endpoint}")
    print(f"Block:          {block_number} ({latency * 1000:.0f} ms)")
    print(f"Gas price:      {maker.eth_service.get_gas_price()} gwei")
    print(f"Address:        {maker.address}")
    print(f"Free collateral {maker.perp_service.get_free_collateral(maker.address)}")
    print(f"Margin ratio:   {maker.perp_service.get_margin_ratio(maker.address)}")
    for market in maker.market_map.values():
        price = maker.perp_service.get_market_price(market.pool)
        orders = maker.perp_service.get_open_orders(maker.address, market.base_token)
        print(f"  {market.name:<10} price={price:.6f} spacing={market.tick_spacing} orders={len(orders)}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Perp range liquidity maker")
    parser.add_argument("--config", "-c", default=config.MAKER_CONFIG_PATH, help="Strategy YAML file")
    parser.add_argument("--live", action="store_true", help="Send hedge venue orders (default: dry run)")
    parser.add_argument("--check", action="store_true", help="Print status and exit")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level")
    args = parser.parse_args()

    setup_logging(args.log_level, config.LOG_FILE or None)
    install_crash_handlers()

    maker = build_maker(args.config, live=args.live or not config.VENUE_DRY_RUN)
    maker.setup()

    if args.check:
        check(maker)
        maker.eth_service.stop()
        return

    maker.eth_service.subscribe_blocks(lambda n: logger.debug("[Maker] new block %s", n))
    maker.start()
    try:
        maker.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Stopping maker.")
    finally:
        maker.stop()
        maker.eth_service.stop()


if __name__ == "__main__":
    main()
