"""KeeperConfig: Network definitions and runtime configuration.

All timing constants and the live/local switch live in a single frozen
``KeeperConfig`` value that is handed to every component, so tests can run
the engine with tiny deadlines and a simulated ledger.

.. code-block:: python

    >>> config = KeeperConfig(network="localhost", chain="moonriver")
    >>> config.is_live
    False
    >>> config.fee_routing_key
    'movr'
"""

from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigError(Exception):
    """Raised for fatal configuration problems (missing signer, address, network)."""

    pass


@dataclass(frozen=True)
class Network:
    """A ledger the keeper can target.

    :ivar name: Network name used on the command line and in the registry path.
    :ivar chain: Chain identifier used for fee-service routing.
    :ivar rpc_url: Default JSON-RPC endpoint.
    :ivar live: True for production networks where timelock delays are real.
    :ivar poa: True if blocks carry PoA extra data.
    """

    name: str
    chain: str
    rpc_url: str
    live: bool = True
    poa: bool = False


NETWORKS: dict[str, Network] = {
    "avalanche": Network(
        name="avalanche",
        chain="avalanche",
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        poa=True,
    ),
    "fantom": Network(
        name="fantom",
        chain="fantom",
        rpc_url="https://rpc.ftm.tools",
    ),
    "moonriver": Network(
        name="moonriver",
        chain="moonriver",
        rpc_url="https://rpc.api.moonriver.moonbeam.network",
    ),
    "moonbeam": Network(
        name="moonbeam",
        chain="moonbeam",
        rpc_url="https://rpc.api.moonbeam.network",
    ),
    # Local fork; the forked chain is picked with FORK_CHAIN
    "localhost": Network(
        name="localhost",
        chain="",
        rpc_url="http://localhost:8545",
        live=False,
    ),
    "hardhat": Network(
        name="hardhat",
        chain="",
        rpc_url="http://localhost:8545",
        live=False,
    ),
}

# Chain name -> key used by the fee-estimation services
FEE_ROUTING_KEYS: dict[str, str] = {
    "avalanche": "avax",
    "fantom": "ftm",
    "moonriver": "movr",
    "moonbeam": "glmr",
}

FEE_TIERS = ("slow", "normal", "fast")

DEPLOYER_ROLE = "deployer"
MANAGER_ROLE = "manager"


def get_network(name: str) -> Network:
    """Look up a network by name.

    :param name: Network name.
    :returns: Network definition.
    :raises ConfigError: If the network is unknown.
    """
    if name not in NETWORKS:
        raise ConfigError(
            f"Unknown network '{name}'. Available: {', '.join(sorted(NETWORKS))}"
        )
    return NETWORKS[name]


@dataclass(frozen=True)
class KeeperConfig:
    """Runtime configuration threaded through every keeper component.

    :ivar network: Target network name.
    :ivar chain: Chain used for fee routing (defaults to the network's chain).
    :ivar live: Override for the network's live flag.
    :ivar max_tx_time: Seconds to wait for a confirmation before replacing.
    :ivar poll_interval: Seconds between receipt polls.
    :ivar gas_bump: Fee multiplier applied to each replacement.
    :ivar max_replacements: Maximum number of replacements per call.
    :ivar fee_timeout: Per-service timeout for fee queries in seconds.
    :ivar broadcast_retries: Attempts per broadcast before giving up.
    :ivar broadcast_backoff: Base delay between broadcast retries.
    :ivar fallback_gas_limit: Gas limit used when estimation reverts.
    :ivar deployments_dir: Root of the deployment registry.
    :ivar team_address: Optional second manager granted on every strategy.
    :ivar timelock_salt: Salt used for timelock operations (hex bytes32).
    """

    network: str = "localhost"
    chain: str = ""
    live: bool | None = None
    max_tx_time: float = 60.0
    poll_interval: float = 1.0
    gas_bump: float = 1.11
    max_replacements: int = 4
    fee_timeout: float = 5.0
    broadcast_retries: int = 5
    broadcast_backoff: float = 1.0
    fallback_gas_limit: int = 3_000_000
    deployments_dir: str = "deployments"
    team_address: str | None = None
    timelock_salt: str = "0x" + "00" * 32
    roles: tuple[str, ...] = (DEPLOYER_ROLE, MANAGER_ROLE)

    def __post_init__(self) -> None:
        if self.max_tx_time <= 0:
            raise ConfigError("max_tx_time must be positive")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        if self.gas_bump <= 1:
            raise ConfigError("gas_bump must be greater than 1")
        if self.max_replacements < 0:
            raise ConfigError("max_replacements must not be negative")
        if self.broadcast_retries < 1:
            raise ConfigError("broadcast_retries must be at least 1")

    @property
    def is_live(self) -> bool:
        """True when timelock delays must elapse for real."""
        if self.live is not None:
            return self.live
        network = NETWORKS.get(self.network)
        return network.live if network else True

    @property
    def fee_chain(self) -> str:
        """Chain whose fee services are queried."""
        if self.chain:
            return self.chain
        network = NETWORKS.get(self.network)
        return network.chain if network else ""

    @property
    def fee_routing_key(self) -> str | None:
        """Fee-service routing key for the configured chain, if any."""
        return FEE_ROUTING_KEYS.get(self.fee_chain)

    @classmethod
    def from_env(cls, **overrides) -> KeeperConfig:
        """Build a config from environment variables.

        Explicit keyword overrides (e.g. from CLI args) take precedence.

        :returns: New KeeperConfig.
        """
        env = os.environ
        values: dict = {
            "network": env.get("NETWORK") or "localhost",
            "chain": env.get("CHAIN") or env.get("FORK_CHAIN") or "",
            # MAX_TX_TIME is in milliseconds
            "max_tx_time": float(env.get("MAX_TX_TIME") or "60000") / 1000,
            "poll_interval": float(env.get("POLL_INTERVAL") or "1.0"),
            "gas_bump": float(env.get("GAS_BUMP") or "1.11"),
            "max_replacements": int(env.get("MAX_REPLACEMENTS") or "4"),
            "fee_timeout": float(env.get("FEE_TIMEOUT") or "5.0"),
            "broadcast_retries": int(env.get("BROADCAST_RETRIES") or "5"),
            "deployments_dir": env.get("DEPLOYMENTS_DIR") or "deployments",
            "team_address": env.get("TEAM_ADDRESS") or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
