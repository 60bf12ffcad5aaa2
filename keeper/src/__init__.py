"""
Vault Keeper - Governance and Maintenance Module

This module drives privileged operations against the vault system:
- GasPriceOracle: Fee aggregation across estimation services
- TxSubmitter: Transaction submission with same-nonce fee replacement
- TimelockScheduler: Propose/wait/execute wrapper around the timelock
- MigrationPlanner: Pure install/migrate decision logic
- StrategyMigrator: Execution of migration plans
- Keeper: Main orchestrator for keeper runs
- gas: Modular fee service implementations
"""

from .DeploymentRegistry import DeploymentRecord, DeploymentRegistry
from .GasPriceOracle import FeeQuote, GasPriceError, GasPriceOracle
from .Keeper import Keeper
from .KeeperConfig import ConfigError, KeeperConfig
from .MigrationPlanner import LedgerSnapshot, MigrationPlan, PlanAction, plan_migration
from .StrategyMigrator import MigrationError, StrategyMigrator
from .TimelockScheduler import ScheduledAction, TimelockScheduler
from .TxSubmitter import PendingCall, TxSubmitter

__all__ = [
    "ConfigError",
    "DeploymentRecord",
    "DeploymentRegistry",
    "FeeQuote",
    "GasPriceError",
    "GasPriceOracle",
    "Keeper",
    "KeeperConfig",
    "LedgerSnapshot",
    "MigrationError",
    "MigrationPlan",
    "PendingCall",
    "PlanAction",
    "ScheduledAction",
    "StrategyMigrator",
    "TimelockScheduler",
    "TxSubmitter",
    "plan_migration",
]
