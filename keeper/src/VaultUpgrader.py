"""VaultUpgrader: Governed upgrade of the vault beacon implementation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .ContractUtility import same_address

if TYPE_CHECKING:
    from web3.contract import Contract

    from .DeploymentRegistry import DeploymentRecord
    from .TimelockScheduler import ScheduledAction, TimelockScheduler

logger = logging.getLogger(__name__)


class VaultUpgrader:
    """Points the vault beacon at a new implementation via the timelock.

    :ivar scheduler: Timelock scheduler.
    """

    def __init__(self, scheduler: TimelockScheduler) -> None:
        self.scheduler = scheduler

    async def upgrade_implementation(
        self,
        factory: Contract,
        beacon: Contract,
        implementation: DeploymentRecord,
    ) -> ScheduledAction | None:
        """Schedule beacon.upgradeTo(implementation) if it is not current.

        :param factory: Vault factory exposing implementation().
        :param beacon: UpgradeableBeacon owned by the timelock.
        :param implementation: Deployed implementation record.
        :returns: The scheduled action, or None if already up to date.
        """
        current = factory.functions.implementation().call()
        if same_address(current, implementation.address):
            logger.info("Reusing vault implementation")
            return None

        logger.info(f"Upgrading vault implementation {current} -> {implementation.address}")
        action = await self.scheduler.schedule(beacon, "upgradeTo", [implementation.address])
        await self.scheduler.settle(action)
        return action
