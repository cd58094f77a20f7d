import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import InquireConfig
from .crawler import Crawler
from .errors import ConfigError, StartupError
from .log_buffer import DEFAULT_FORMAT
from .util.signals import SignalHandler


def _attach_file_logging(log_path: Path, level: str) -> None:
    logger = logging.getLogger()

    for h in logger.handlers:
        if isinstance(h, logging.FileHandler):
            if Path(getattr(h, "baseFilename", "")) == log_path:
                return

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


def setup_logging(config: InquireConfig, debug: bool = False) -> None:
    level = "DEBUG" if debug else config.logs.log_level
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=DEFAULT_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if config.logs.log_file:
        _attach_file_logging(Path(config.logs.log_file).resolve(), level)


def load_config(args: argparse.Namespace) -> InquireConfig:
    overrides = {"seed": args.seed, "max_scheduled": args.max_scheduled}
    if args.config:
        return InquireConfig.from_yaml(args.config, **overrides)
    if not args.seed:
        raise ConfigError("either --seed or --config is required")
    return InquireConfig.from_dict({k: v for k, v in overrides.items() if v is not None})


def _summary(crawler: Crawler) -> dict:
    status = crawler.status()
    return {
        "running": status.running,
        "state": status.state,
        "nodes": len(status.nodes),
        "edges": status.edge_count,
        "scheduled": f"{status.scheduled_count}/{status.max_scheduled}",
    }


async def run_crawler(config: InquireConfig, as_json: bool = False) -> int:
    crawler = Crawler.from_config(config)

    signals = SignalHandler()
    signals.on_status(lambda: _summary(crawler))
    signals.setup()

    try:
        await crawler.run(signals.shutdown_event)
    except StartupError as e:
        print(f"\nError: {e}")
        return 1
    finally:
        signals.cleanup()

    status = crawler.status()
    if as_json:
        print(json.dumps(status.to_dict(), indent=2))
        return 0

    fetched = [node for node in status.nodes if node.fetched]
    failed = [node for node in status.nodes if node.error]
    print("\n=== Crawl Summary ===")
    print(f"Nodes discovered: {len(status.nodes)}")
    print(f"Nodes fetched:    {len(fetched)}")
    print(f"Fetch errors:     {len(failed)}")
    print(f"Links recorded:   {status.edge_count}")
    print(f"Scheduled:        {status.scheduled_count}/{status.max_scheduled} ({status.stop_reason})")
    print("=====================\n")
    for node in status.nodes:
        code = node.response.status_code if node.response else "-"
        print(f"  [{node.id:>4}] {code!s:>3} {node.url}{'  ! ' + node.error if node.error else ''}")
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Crawl a site from a seed URL and record its link graph")

    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--seed", help="Seed URL (overrides config)")
    parser.add_argument("--max-scheduled", "--depth", dest="max_scheduled", type=int,
                        help="Maximum number of URLs to schedule (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--json", action="store_true", help="Print the final status as JSON")

    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except (ConfigError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(config, debug=args.debug)

    if not args.json:
        print("\n=== Crawler Configuration ===")
        print(f"Seed: {config.seed}")
        print(f"Max Scheduled: {config.max_scheduled}")
        print(f"Concurrency: {config.limits.concurrency}")
        print(f"User Agent: {config.user_agent}")
        print("=============================\n")

    try:
        return asyncio.run(run_crawler(config, as_json=args.json))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
