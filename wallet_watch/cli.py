"""
Wallet Watch - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface and runtime wiring.

- Provides argparse-based CLI
- Loads configuration from .env, environment and CLI flags
- Wires sources, oracle, registry, engine and pipeline
- Runs the scheduler and the status API until SIGINT/SIGTERM

============================================================
USAGE
============================================================
python app.py
python app.py --single-cycle --log-format text
python app.py --no-api --swap-threshold 10000 --min-wallets 4

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

import aiohttp
from dotenv import load_dotenv

from . import __version__
from .api import StatusServer
from .classifier import EventClassifier
from .clock import SystemClock
from .config import WatchConfig
from .dedup import Deduplicator
from .exceptions import ConfigurationError
from .ledger import SolanaLedgerClient
from .notifications import AlertSink, LoggingAlertSink, TelegramAlertSink
from .pipeline import WatchPipeline
from .price_oracle import PriceOracle
from .scheduler import WatchScheduler
from .significance import SignificanceEngine
from .sources import (
    DexScreenerLiquiditySource,
    JupiterTokenListSource,
    OnChainMetadataSource,
    default_price_sources,
)
from .state import PipelineState
from .throttle import RequestThrottle
from .token_registry import TokenRegistry


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "json") -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("wallet_watch")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="wallet-watch",
        description="Solana wallet watcher: large swaps and coordinated buying alerts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Configuration is read from the environment (and a .env file):
  RPC_URL, WALLETS, TG_TOKEN, TG_CHAT_ID, PORT, SWAP_THRESHOLD_USD, ...
Command-line flags override the environment.

Examples:
  %(prog)s                                 # Run scheduler and status API
  %(prog)s --single-cycle                  # Scan once and exit
  %(prog)s --no-api --log-format text      # No HTTP endpoint, readable logs
        """
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--single-cycle",
        action="store_true",
        help="Run a single scan cycle and exit (no loop)",
    )

    execution_group.add_argument(
        "--scan-interval",
        type=float,
        metavar="SECONDS",
        help="Scan interval in seconds (default: 60)",
    )

    execution_group.add_argument(
        "--sweep-interval",
        type=float,
        metavar="SECONDS",
        help="Bucket sweep interval in seconds (default: 21600 = 6 hours)",
    )

    execution_group.add_argument(
        "--concurrency",
        type=int,
        metavar="N",
        help="Wallets scanned concurrently (default: 4)",
    )

    # --------------------------------------------------------
    # Threshold Options
    # --------------------------------------------------------
    threshold_group = parser.add_argument_group("Threshold Options")

    threshold_group.add_argument(
        "--swap-threshold",
        type=float,
        metavar="USD",
        help="Minimum USD value of a swap alert (default: 2500)",
    )

    threshold_group.add_argument(
        "--min-wallets",
        type=int,
        metavar="N",
        help="Distinct wallets for a coordinated-buy alert (default: 3)",
    )

    # --------------------------------------------------------
    # API Options
    # --------------------------------------------------------
    api_group = parser.add_argument_group("API Options")

    api_group.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the status HTTP endpoint",
    )

    api_group.add_argument(
        "--port",
        type=int,
        help="Status API port (default: PORT or 3000)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="json",
        help="Logging format (default: json)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if args.port is not None and not 0 < args.port < 65536:
        errors.append("--port must be between 1 and 65535")
    if args.swap_threshold is not None and args.swap_threshold <= 0:
        errors.append("--swap-threshold must be positive")
    if args.min_wallets is not None and args.min_wallets < 2:
        errors.append("--min-wallets must be at least 2")
    if args.scan_interval is not None and args.scan_interval < 1:
        errors.append("--scan-interval must be at least 1 second")
    if args.sweep_interval is not None and args.sweep_interval < 1:
        errors.append("--sweep-interval must be at least 1 second")
    if args.concurrency is not None and args.concurrency < 1:
        errors.append("--concurrency must be at least 1")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace, environ: Optional[dict] = None) -> WatchConfig:
    """
    Build configuration from the environment, then apply CLI overrides.

    Raises:
        ConfigurationError: If an environment value cannot be parsed
    """
    config = WatchConfig.from_env(environ)

    if args.no_api:
        config.api_enabled = False
    if args.port is not None:
        config.api_port = args.port
    if args.scan_interval is not None:
        config.scan_interval_seconds = args.scan_interval
    if args.sweep_interval is not None:
        config.sweep_interval_seconds = args.sweep_interval
    if args.concurrency is not None:
        config.scan_concurrency = args.concurrency
    if args.swap_threshold is not None:
        config.significance.swap_threshold_usd = args.swap_threshold
    if args.min_wallets is not None:
        config.significance.min_wallets = args.min_wallets

    return config


# ============================================================
# RUNTIME
# ============================================================

class WatchRuntime:
    """All long-lived components of one process, wired together."""

    def __init__(self, config: WatchConfig, session: aiohttp.ClientSession) -> None:
        self.config = config
        self.session = session
        self.state = PipelineState()
        self.clock = SystemClock()

        self.throttle = RequestThrottle(
            min_interval_seconds=config.throttle.min_interval_seconds,
            max_per_minute=config.throttle.max_per_minute,
            timeout_seconds=config.throttle.timeout_seconds,
            name="sources",
        )
        rpc_throttle = RequestThrottle(
            min_interval_seconds=1.0 / config.rpc_requests_per_second,
            timeout_seconds=config.rpc_timeout_seconds,
            name="solana_rpc",
        )

        self.price_sources = default_price_sources(session, config.coingecko_api_key)
        self.token_sources = [
            JupiterTokenListSource(session),
            OnChainMetadataSource(config.rpc_url, session),
        ]
        liquidity_source = DexScreenerLiquiditySource(session)

        self.oracle = PriceOracle(
            self.price_sources,
            self.throttle,
            state=self.state,
            clock=self.clock,
            cache_ttl_seconds=config.price_cache_ttl_seconds,
        )
        self.registry = TokenRegistry(
            self.token_sources,
            self.throttle,
            state=self.state,
            clock=self.clock,
            scam_mints=config.scam_mints,
            flag_refresh_seconds=config.token_flag_refresh_seconds,
        )
        self.engine = SignificanceEngine(
            self.registry,
            self.oracle,
            state=self.state,
            clock=self.clock,
            config=config.significance,
            liquidity_source=liquidity_source,
            throttle=self.throttle,
        )
        self.ledger = SolanaLedgerClient(config.rpc_url, throttle=rpc_throttle, session=session)
        self.sink = self._create_sink(config, session)

        self.pipeline = WatchPipeline(
            config,
            self.ledger,
            EventClassifier(),
            self.engine,
            Deduplicator(self.state),
            self.sink,
            state=self.state,
            clock=self.clock,
        )
        self.scheduler = WatchScheduler(
            self.pipeline,
            self.engine,
            scan_interval=config.scan_interval_seconds,
            sweep_interval=config.sweep_interval_seconds,
        )
        self.server: Optional[StatusServer] = None
        if config.api_enabled:
            self.server = StatusServer(self.pipeline, host=config.api_host, port=config.api_port)

    @staticmethod
    def _create_sink(config: WatchConfig, session: aiohttp.ClientSession) -> AlertSink:
        if config.telegram_enabled:
            return TelegramAlertSink(
                config.telegram_bot_token,
                config.telegram_chat_ids,
                session=session,
            )
        logger.warning("Telegram NOT configured (TG_TOKEN / TG_CHAT_ID), alerts go to the log")
        return LoggingAlertSink()

    async def start(self) -> None:
        if self.server is not None:
            await self.server.start()
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self.server is not None:
            await self.server.stop()
        await self.pipeline.drain()
        await self.sink.close()
        for source in self.price_sources:
            await source.close()


# ============================================================
# MAIN ENTRY POINT
# ============================================================

def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Install signal handlers for graceful shutdown."""
    if sys.platform == "win32":
        # Windows: Ctrl+C surfaces as KeyboardInterrupt
        return

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: _on_signal(s, stop_event))


def _on_signal(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    logger.info(f"Received signal {sig.name}, shutting down")
    stop_event.set()


async def async_main(args: argparse.Namespace, config: WatchConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    timeout = aiohttp.ClientTimeout(total=20)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        runtime = WatchRuntime(config, session)
        try:
            if args.single_cycle:
                report = await runtime.pipeline.run_scan_cycle()
                return 0 if report.wallets_scanned > 0 else 1

            stop_event = asyncio.Event()
            _install_signal_handlers(stop_event)
            await runtime.start()
            await stop_event.wait()
            return 0

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            return 130
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            return 1
        finally:
            await runtime.stop()


def print_banner(config: WatchConfig, args: argparse.Namespace) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  WALLET WATCH")
    print("  Solana swap and coordinated-buy alerts")
    print("=" * 60)
    print(f"  Wallets:        {len(config.wallets)}")
    print(f"  RPC:            {config.rpc_url}")
    print(f"  Swap threshold: ${config.significance.swap_threshold_usd:,.0f}")
    print(f"  Min wallets:    {config.significance.min_wallets}")
    print(f"  Alerts:         {'telegram' if config.telegram_enabled else 'log'}")
    if args.single_cycle:
        print("  Mode:           single cycle")
    else:
        print(f"  Scan interval:  {config.scan_interval_seconds:.0f}s")
        print(f"  Sweep interval: {config.sweep_interval_seconds:.0f}s")
        print(f"  Status API:     {f'port {config.api_port}' if config.api_enabled else 'disabled'}")
    print(f"  Log Level:      {args.log_level}")
    print("=" * 60)
    print()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    config: Optional[WatchConfig] = None
    if not errors:
        try:
            config = build_config(args)
        except ConfigurationError as e:
            errors.append(e.message)
        else:
            errors.extend(config.validate())

    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(args.log_level, args.log_format)
    print_banner(config, args)

    return asyncio.run(async_main(args, config))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
