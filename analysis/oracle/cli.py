"""Command-line entry point for the ORACLE spread scanner."""

import argparse
import asyncio
import signal
import sys
from collections.abc import Iterable

from merovingian import DiaOracleClient, UniswapSubgraphClient
from shared import AgentLogger, MatrixConfig, configure_logging, get_config

from .cycle import MarketAnalyzer
from .feed import PriceFeedPublisher, TradingPair
from .snapshot import JsonSnapshotSink


GLOBAL_FLAGS = ("--json-logs", "-h", "--help")
GLOBAL_OPTIONS = ("--log-level",)


def _with_default_command(argv: list[str]) -> list[str]:
    """Insert ``analyze`` where the subcommand would go if none was given."""
    expects_value = False
    for index, token in enumerate(argv):
        if expects_value:
            expects_value = False
            continue
        if token in GLOBAL_OPTIONS:
            expects_value = True
            continue
        if token in GLOBAL_FLAGS or token.startswith("--log-level="):
            continue
        if token in COMMANDS:
            return argv
        return [*argv[:index], "analyze", *argv[index:]]
    return [*argv, "analyze"]


def _parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="matrix-oracle",
        description="Detect price spreads between the DIA oracle and Uniswap V3 pools.",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: from config).")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines.")

    sub = parser.add_subparsers(dest="command")

    analyze = sub.add_parser("analyze", help="Run spread analysis (default).")
    analyze.add_argument("symbols", nargs="*", help="Symbols to analyze (default: from config).")
    analyze.add_argument("-c", "--continuous", action="store_true", help="Re-run on the update interval.")
    analyze.add_argument("--output", help="Snapshot path (default: from config).")

    feed = sub.add_parser("feed", help="Publish the oracle price feed.")
    feed.add_argument("-c", "--continuous", action="store_true", help="Re-publish on the update interval.")
    feed.add_argument("--output", help="Feed path (default: from config).")

    pools = sub.add_parser("pools", help="List the most liquid Uniswap pools.")
    pools.add_argument("--limit", type=int, default=10)
    pools.add_argument("--min-tvl", type=float, default=1_000_000)

    argv = list(argv) if argv is not None else sys.argv[1:]
    return parser.parse_args(_with_default_command(argv))


def _stop_on_signals(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops lack signal handlers
            pass


async def _analyze(config: MatrixConfig, args: argparse.Namespace, logger: AgentLogger) -> int:
    symbols = [s.upper() for s in args.symbols] or config.symbols
    sink = JsonSnapshotSink(args.output or config.sink.output_file)

    async with DiaOracleClient.from_config(config.dia) as dia, \
            UniswapSubgraphClient.from_config(config.subgraph) as subgraph:
        analyzer = MarketAnalyzer(
            oracle_source=dia,
            pool_source=subgraph,
            detection=config.detection,
            sink=sink,
            version=config.version,
        )

        if args.continuous:
            stop_event = asyncio.Event()
            _stop_on_signals(stop_event)
            await analyzer.run_continuous(symbols, config.update_interval_seconds, stop_event)
            return 0

        result = await analyzer.run_cycle(symbols)

    if not result.persisted:
        logger.error("Analysis finished but snapshot was not saved", path=str(sink.path))
        return 1
    return 0


async def _feed(config: MatrixConfig, args: argparse.Namespace, logger: AgentLogger) -> int:
    pairs = [TradingPair.parse(p) for p in config.trading_pairs]

    async with DiaOracleClient.from_config(config.dia) as dia:
        publisher = PriceFeedPublisher(
            oracle_source=dia,
            output_file=args.output or config.sink.price_feed_file,
            update_interval_ms=config.update_interval_ms,
            version=config.version,
        )
        if args.continuous:
            stop_event = asyncio.Event()
            _stop_on_signals(stop_event)
            await publisher.run_continuous(pairs, stop_event)
            return 0

        feed = await publisher.publish(pairs)

    for quote in feed.pairs:
        if quote.success:
            logger.info("Pair", pair=f"{quote.base_token}/{quote.quote_token}", price=round(quote.price, 6))
        else:
            logger.warning("Pair", pair=f"{quote.base_token}/{quote.quote_token}", error=quote.error)
    return 0


async def _pools(config: MatrixConfig, args: argparse.Namespace, logger: AgentLogger) -> int:
    async with UniswapSubgraphClient.from_config(config.subgraph) as subgraph:
        result = await subgraph.fetch_popular_pools(limit=args.limit, min_tvl_usd=args.min_tvl)

    if not result.succeeded:
        logger.error("Could not fetch pools", error=str(result.error))
        return 1

    for rank, pool in enumerate(result.value, start=1):
        logger.info(
            "Pool",
            rank=rank,
            pair=f"{pool.token0.symbol}/{pool.token1.symbol}",
            fee_tier=pool.fee_tier,
            tvl_usd=round(pool.total_value_locked_usd, 2),
            volume_usd=round(pool.volume_usd, 2),
        )
    return 0


COMMANDS = {"analyze": _analyze, "feed": _feed, "pools": _pools}


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv)
    config = get_config()

    configure_logging(
        level=args.log_level or config.monitoring.log_level,
        json_format=args.json_logs or config.monitoring.json_logs or config.is_production(),
    )
    logger = AgentLogger("ORACLE-CLI")

    try:
        return asyncio.run(COMMANDS[args.command](config, args, logger))
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.exception("Command failed", command=args.command, error=str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
