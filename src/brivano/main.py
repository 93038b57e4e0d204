#!/usr/bin/env python3
"""CLI entry point for the Brivano enrichment service.

Usage:
    brivano serve --port 8080
    brivano init-db
    brivano check-env
    brivano enrich --domain acmedental.com --titles owner,ceo --verbose

Example:
    # Run the waterfall once against the configured providers and save it
    brivano enrich --domain acmedental.com --company "Acme Dental" --output acme.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .config import ConfigError, config
from .enrichment import RetryPolicy, WaterfallEnricher, WaterfallResult
from .integrations import build_providers, build_validators
from .logging_utils import setup_logging

# Environment variables reported by check-env
PROVIDER_VARS = [
    "APOLLO_API_KEY",
    "HUNTER_API_KEY",
    "PDL_API_KEY",
    "CLEARBIT_API_KEY",
]
OPTIONAL_VARS = [
    "ZEROBOUNCE_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
]


def parse_titles(titles_str: Optional[str]) -> list[str]:
    """Parse a comma-separated list of job titles.

    Args:
        titles_str: Comma-separated string of titles, or None.

    Returns:
        List of stripped, non-empty titles.
    """
    if not titles_str:
        return []
    return [title.strip() for title in titles_str.split(",") if title.strip()]


def print_env_status() -> bool:
    """Print which provider credentials are configured.

    Returns:
        True if the database and at least one provider are configured.
    """
    print("\nEnvironment Status:")
    print("-" * 40)

    db_ok = bool(config.DATABASE_URL)
    print(f"  [{'✓' if db_ok else '✗'}] DATABASE_URL (required)")

    configured = set(config.configured_providers)
    for var in PROVIDER_VARS:
        name = var.split("_")[0].lower()
        symbol = "✓" if name in configured else "-"
        print(f"  [{symbol}] {var} (provider)")

    for var in OPTIONAL_VARS:
        symbol = "✓" if getattr(config, var) else "-"
        print(f"  [{symbol}] {var} (optional)")

    print("-" * 40)

    if not configured:
        print("\nError: No enrichment providers configured.")
    return db_ok and bool(configured)


def print_waterfall_result(result: WaterfallResult) -> None:
    """Print a waterfall result in a formatted manner."""
    print("\n" + "=" * 60)
    print("WATERFALL RESULT")
    print("=" * 60)

    status_symbol = "✓" if result.is_complete else "✗"
    print(f"\nState: [{status_symbol}] {result.terminal_state.value.upper()}")
    print(f"Providers used: {', '.join(result.providers_used) or 'none'}")

    print("\nSteps:")
    for step in result.step_log:
        outcome = "ok" if step.success else f"failed ({step.error})"
        print(
            f"  {step.provider:<12} {outcome:<30} "
            f"found={','.join(step.fields_found) or '-'} "
            f"attempts={step.attempts} {step.duration_ms}ms"
        )

    print("\nFields:")
    for name, value in result.merged_fields.items():
        if value is not None:
            print(f"  {name}: {value}")
    print("=" * 60)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="brivano",
        description="Credit entitlements and waterfall contact enrichment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable INFO logging")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=config.API_HOST, help="Bind address")
    serve.add_argument("--port", type=int, default=config.API_PORT, help="Bind port")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("check-env", help="Show configured credentials")

    enrich = subparsers.add_parser(
        "enrich", help="Run the waterfall once without billing or persistence"
    )
    enrich.add_argument("--domain", required=True, help="Company domain to enrich")
    enrich.add_argument("--name", dest="full_name", help="Known contact full name")
    enrich.add_argument("--email", help="Known contact email")
    enrich.add_argument("--phone", help="Known contact phone")
    enrich.add_argument("--company", dest="company_name", help="Known company name")
    enrich.add_argument("--titles", help="Comma-separated target job titles")
    enrich.add_argument("--output", "-o", help="Write the JSON result to this file")
    enrich.add_argument("--json", action="store_true", help="Print JSON instead of a summary")

    return parser


async def run_enrich(args: argparse.Namespace) -> WaterfallResult:
    """Build the configured waterfall and run it for ``args.domain``."""
    enricher = WaterfallEnricher(
        build_providers(config),
        RetryPolicy(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            base_delay=config.RETRY_BASE_DELAY_SECONDS,
        ),
        validators=build_validators(config),
    )
    known: dict[str, Any] = {
        name: getattr(args, name)
        for name in ("full_name", "email", "phone", "company_name")
        if getattr(args, name)
    }
    try:
        return await enricher.run(args.domain, known, target_titles=parse_titles(args.titles))
    finally:
        await enricher.close()


async def run_init_db() -> None:
    from .models import close_database, init_database

    try:
        await init_database()
    finally:
        await close_database()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    level = "WARNING"
    if args.debug:
        level = "DEBUG"
    elif args.verbose:
        level = "INFO"
    logger = setup_logging(level=level)

    if args.command == "check-env":
        return 0 if print_env_status() else 1

    if args.command == "serve":
        import uvicorn

        logger.info("Starting API on %s:%d", args.host, args.port)
        uvicorn.run("brivano.api:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    if args.command == "init-db":
        try:
            config.validate_for_database()
        except ConfigError as e:
            print(f"\nError: {e}")
            return 1
        asyncio.run(run_init_db())
        print("Database tables created.")
        return 0

    try:
        config.validate_for_enrichment()
    except ConfigError as e:
        print(f"\nError: {e}")
        return 1

    result = asyncio.run(run_enrich(args))
    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print_waterfall_result(result)

    if args.output:
        output_path = Path(args.output)
        with open(output_path, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"\nResults saved to: {output_path}")

    return 0 if not result.failed else 1


if __name__ == "__main__":
    sys.exit(main())
