#!/usr/bin/env python3
"""Vault Keeper.

Installs and migrates vault strategies, upgrades the vault implementation
through the timelock, and rebalances strategies, pricing every transaction
from multiple fee-estimation services.

Configure via env vars; CLI arguments take precedence.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.Keeper import Keeper
from .src.KeeperConfig import FEE_TIERS, NETWORKS, KeeperConfig
from .src.gas import get_available_gas_fetchers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: owlracle=abc123

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_OWLRACLE, API_KEY_DEBANK, etc.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in os.environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                source = key[len(prefix):].lower()
                api_keys[source] = value
                break

    return api_keys


def split_list(value: str | None) -> list[str] | None:
    """Split a comma-separated option, returning None when unset."""
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


async def run_command(keeper: Keeper, args: argparse.Namespace) -> None:
    """Run one CLI command against a keeper, closing it afterwards."""
    try:
        if args.command == "migrate":
            await keeper.run_migrations(
                args.vault, args.candidates_dir, split_list(args.symbols)
            )
        elif args.command == "upgrade-vault":
            await keeper.upgrade_vault()
        elif args.command == "gas":
            price = await keeper.gas_price(args.tier)
            print(price)
        elif args.command == "rebalance":
            receipt = await keeper.rebalance(args.symbol)
            if receipt is None:
                logger.info(f"{args.symbol}: rebalance not necessary")
    finally:
        await keeper.close()


def main() -> None:
    """Main entry point for the Vault Keeper CLI."""
    available_sources = get_available_gas_fetchers()

    parser = argparse.ArgumentParser(
        description="Vault Keeper: Strategy migrations and governed upgrades",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available fee sources:
  {', '.join(available_sources)}

Examples:
  # Migrate every strategy found in the deploy output on a local fork
  python -m keeper.main migrate --network localhost --chain moonriver \\
      --candidates-dir build/deployments

  # Upgrade the vault implementation on moonriver
  python -m keeper.main upgrade-vault --network moonriver

  # Print the fast-tier fee
  python -m keeper.main gas --network avalanche --tier fast

Environment variables (CLI args take precedence):
  NETWORK, CHAIN, FORK_CHAIN, MAX_TX_TIME (milliseconds), POLL_INTERVAL,
  GAS_BUMP, MAX_REPLACEMENTS, FEE_TIMEOUT, BROADCAST_RETRIES, DEPLOYMENTS_DIR,
  TEAM_ADDRESS, DEPLOYER_PRIVATE_KEY, MANAGER_PRIVATE_KEY, RPC_URL,
  API_KEY_OWLRACLE, etc.
""",
    )

    parser.add_argument(
        "--network",
        type=str,
        help=f"Network to connect to ({', '.join(NETWORKS)})",
        default=os.environ.get("NETWORK") or "localhost",
    )

    parser.add_argument(
        "--chain",
        type=str,
        help="Chain used for fee routing (default: the network's chain)",
        default=None,
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated fee sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("FEE_SOURCES"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., owlracle=abc)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "--max-tx-time",
        dest="max_tx_time",
        type=float,
        help="Seconds to wait for a confirmation before replacing (default: 60)",
        default=None,
    )

    parser.add_argument(
        "--gas-bump",
        dest="gas_bump",
        type=float,
        help="Fee multiplier for each replacement (default: 1.11)",
        default=None,
    )

    parser.add_argument(
        "--max-replacements",
        dest="max_replacements",
        type=int,
        help="Replacements per transaction before giving up (default: 4)",
        default=None,
    )

    parser.add_argument(
        "--deployments-dir",
        dest="deployments_dir",
        type=str,
        help="Root of the deployment registry (default: deployments)",
        default=None,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", help="Install or migrate strategies")
    migrate.add_argument(
        "--vault",
        type=str,
        help="Registry name of the vault (default: USDC-Vault-0.2)",
        default=os.environ.get("VAULT") or "USDC-Vault-0.2",
    )
    migrate.add_argument(
        "--candidates-dir",
        dest="candidates_dir",
        type=str,
        help="Root of the freshly deployed strategy records",
        default=os.environ.get("CANDIDATES_DIR"),
    )
    migrate.add_argument(
        "--symbols",
        type=str,
        help="Comma-separated strategy symbols (default: every candidate)",
        default=os.environ.get("SYMBOLS"),
    )

    subparsers.add_parser(
        "upgrade-vault", help="Upgrade the vault implementation through the timelock"
    )

    gas = subparsers.add_parser("gas", help="Print the aggregated fee price")
    gas.add_argument("--tier", choices=FEE_TIERS, default="normal")

    rebalance = subparsers.add_parser("rebalance", help="Rebalance a strategy if needed")
    rebalance.add_argument("symbol", type=str, help="Strategy symbol")

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.network not in NETWORKS:
        parser.error(
            f"Unknown network '{args.network}'. Available: {', '.join(NETWORKS)}"
        )

    if args.command == "migrate" and not args.candidates_dir:
        parser.error("migrate requires --candidates-dir (or CANDIDATES_DIR)")

    sources = split_list(args.sources)
    if sources is not None:
        sources = [s.lower() for s in sources]
        invalid_sources = [s for s in sources if s not in available_sources]
        if invalid_sources:
            parser.error(
                f"Unknown sources: {invalid_sources}. "
                f"Available: {', '.join(available_sources)}"
            )

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    try:
        config = KeeperConfig.from_env(
            network=args.network,
            chain=args.chain,
            max_tx_time=args.max_tx_time,
            gas_bump=args.gas_bump,
            max_replacements=args.max_replacements,
            deployments_dir=args.deployments_dir,
        )

        # Log configuration
        logger.info("=" * 60)
        logger.info("Vault Keeper")
        logger.info("=" * 60)
        logger.info(f"Command:           {args.command}")
        logger.info(f"Network:           {config.network}")
        logger.info(f"Fee Chain:         {config.fee_chain or 'none'}")
        logger.info(f"Live:              {config.is_live}")
        logger.info(f"Max Tx Time:       {config.max_tx_time}s")
        logger.info(f"Gas Bump:          {config.gas_bump}")
        logger.info(f"Max Replacements:  {config.max_replacements}")
        logger.info(f"Deployments:       {config.deployments_dir}")
        if api_keys:
            logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
        logger.info("=" * 60)

        keeper = Keeper(config, sources=sources, api_keys=api_keys)
        asyncio.run(run_command(keeper, args))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
