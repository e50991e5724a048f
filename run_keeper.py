#!/usr/bin/env python3
"""
AetherCycle keeper.

Deploys a protocol instance from configuration, optionally serves the
status/trigger API, and calls ``run_cycle`` on a fixed interval.

Usage:
    python run_keeper.py --config aethercycle.toml
    python run_keeper.py --simulate --cycles 24 --trade-volume 50000
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os

from aethercycle_core.api import APIServer
from aethercycle_core.clock import Clock, ManualClock, system_clock
from aethercycle_core.config import load_config
from aethercycle_core.engine import CooldownNotElapsed, CycleReport
from aethercycle_core.errors import AetherCycleError
from aethercycle_core.logging_config import setup_logging
from aethercycle_core.precision import aec, format_amount
from aethercycle_core.protocol import AetherCycleProtocol, build_protocol

logger = logging.getLogger("aethercycle.keeper")

TRADER = "simulated-trader"
TRADE_DEADLINE = 300


def simulate_trade(protocol: AetherCycleProtocol, trader: str, amount: int) -> int:
    """Sell ``amount`` freshly minted AEC into the pair to generate tax."""
    protocol.aec.mint(protocol.deployer, trader, amount)
    protocol.aec.approve(trader, protocol.market.address, amount)
    _, out = protocol.market.swap_exact_tokens_for_tokens(
        trader, amount, 0, [protocol.aec.address, protocol.stable.address],
        trader, protocol.clock() + TRADE_DEADLINE)
    return out


class Keeper:
    """Triggers cycles on a schedule and logs each outcome."""

    def __init__(self, protocol: AetherCycleProtocol, address: str, interval: int):
        if interval <= 0:
            raise ValueError("Keeper interval must be positive")
        self.protocol = protocol
        self.address = address
        self.interval = interval
        self.reports: list[CycleReport] = []

    def tick(self) -> CycleReport | None:
        engine = self.protocol.engine
        try:
            report = engine.run_cycle(self.address)
        except CooldownNotElapsed:
            logger.info(f"Cooldown active, {engine.cooldown_remaining()}s remaining")
            return None
        except AetherCycleError as exc:
            logger.error(f"Cycle rejected: {exc}")
            return None
        self.reports.append(report)
        if report.skipped:
            logger.info(f"Cycle skipped: {report.skip_reason} "
                        f"({format_amount(report.total_balance)})")
        else:
            logger.info(
                f"Cycle done: burned {format_amount(report.burned)}, "
                f"LP {format_amount(report.lp_tokens_minted, 'LP')}, "
                f"refilled {format_amount(report.refilled)}, "
                f"reward {format_amount(report.caller_reward)}")
        return report

    async def run(self, cycles: int | None = None, trade_volume: int = 0) -> None:
        done = 0
        clock = self.protocol.clock
        while cycles is None or done < cycles:
            if trade_volume > 0:
                simulate_trade(self.protocol, TRADER, trade_volume)
            self.tick()
            done += 1
            if isinstance(clock, ManualClock):
                clock.advance(self.interval)
                await asyncio.sleep(0)
            else:
                await asyncio.sleep(self.interval)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="AetherCycle Keeper")
    p.add_argument("--config", default=None, help="Path to aethercycle.toml config file")
    p.add_argument("--interval", type=int, default=None,
                   help="Seconds between cycle attempts (overrides [keeper])")
    p.add_argument("--cycles", type=int, default=None,
                   help="Stop after this many attempts (default: run forever)")
    p.add_argument("--simulate", action="store_true",
                   help="Use a manual clock that jumps one interval per attempt")
    p.add_argument("--trade-volume", type=float,
                   default=float(os.environ.get("AETHERCYCLE_TRADE_VOLUME", "0")),
                   help="AEC sold into the pair before each attempt (simulation)")
    p.add_argument("--no-api", action="store_true", help="Do not start the HTTP API")
    return p.parse_args()


async def main() -> None:
    args = parse_args()
    cfg = load_config(args.config)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    clock: Clock = ManualClock() if args.simulate else system_clock
    protocol = build_protocol(cfg, clock)
    interval = args.interval or cfg.keeper.interval_seconds
    keeper = Keeper(protocol, cfg.keeper.address, interval)

    api = None
    if cfg.api.enabled and not args.no_api:
        api = APIServer(protocol, cfg.api.host, cfg.api.port, api_config=cfg.api)
        await api.start()

    try:
        if cfg.keeper.enabled:
            await keeper.run(args.cycles, aec(str(args.trade_volume)))
        else:
            while True:
                await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        if api is not None:
            await api.stop()
        logger.info(f"Keeper stopped after {len(keeper.reports)} cycle(s); "
                    f"total burned {format_amount(protocol.engine.total_burned)}")


def main_sync() -> None:
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
