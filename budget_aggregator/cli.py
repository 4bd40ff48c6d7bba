#!/usr/bin/env python3
"""
Interactive budget aggregation.

Usage:
    budget-aggregator                                   # Prompt for sheet URLs
    budget-aggregator --sources URL1,URL2 --master URL  # No prompts for URLs
    budget-aggregator --dry-run                         # Compute totals, don't write
    budget-aggregator --yes                             # Answer yes to every question
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from budget_aggregator.aggregator import AggregationPipeline
from budget_aggregator.config import LOG_LEVEL
from budget_aggregator.exceptions import AggregatorError
from budget_aggregator.llm_client import LLMClient
from budget_aggregator.sheets_client import SheetsGateway

logger = logging.getLogger(__name__)


def split_sources(raw: str) -> List[str]:
    """Comma-separated references, blanks dropped."""
    return [part.strip() for part in raw.split(',') if part.strip()]


def prompt(question: str) -> str:
    return input(question).strip()


def confirm_on_console(question: str) -> bool:
    answer = prompt(f"{question} [y/N]: ")
    return answer.lower() in ('y', 'yes')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Merge several budget sheets into one master sheet'
    )
    parser.add_argument(
        '--sources', '-s',
        type=str,
        help='Comma-separated source Google Sheet URLs (prompted if omitted)'
    )
    parser.add_argument(
        '--master', '-m',
        type=str,
        help='Master Google Sheet URL (prompted if omitted)'
    )
    parser.add_argument(
        '--dry-run', '-n',
        action='store_true',
        help='Compute totals without writing to the master sheet'
    )
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Confirm overwrites and unnormalized output without asking'
    )
    return parser.parse_args(argv)


async def run_aggregation(args: argparse.Namespace, gateway=None, llm=None) -> int:
    """Run one aggregation from parsed arguments. Returns the exit code."""
    try:
        sources = split_sources(args.sources or prompt("Enter source Google Sheet URLs separated by commas: "))
        master = args.master or prompt("Enter master Google Sheet URL: ")
        pipeline = AggregationPipeline(
            gateway=gateway or SheetsGateway(),
            llm=llm or LLMClient(),
            confirm=(lambda question: True) if args.yes else confirm_on_console,
            dry_run=args.dry_run,
        )
        result = await pipeline.run(sources, master)
    except AggregatorError as e:
        print(f"Error: {e.message}")
        return 1
    except EOFError:
        print("Error: no input available (stdin is closed); pass --sources, --master and --yes")
        return 1
    except Exception as e:
        logger.debug("Aggregation failed", exc_info=True)
        print(f"Error: {e}")
        return 1

    for name, amount in sorted(result.totals.items()):
        print(f"  {name:30} {amount}")
    if result.skipped_rows:
        print(f"Skipped rows: {result.skipped_rows}")
    print(result.message)
    return 0


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        exit_code = asyncio.run(run_aggregation(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
