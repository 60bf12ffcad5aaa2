"""TimelockScheduler: Propose/wait/execute wrapper around a TimelockController.

Privileged calls are not sent to their target directly. They are scheduled on
an OpenZeppelin TimelockController and can only be executed once the
controller's minimum delay has elapsed::

    Proposed --(delay elapses)--> Executable --(execute_scheduled)--> Executed

Scheduling and execution both go through TxSubmitter, so they inherit its
timeout and replacement behaviour. There is no cancel path; an abandoned
proposal stays executable until someone executes it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

from web3 import Web3
from web3.types import TxReceipt

from .ContractUtility import encode_call
from .KeeperConfig import DEPLOYER_ROLE
from .TxSubmitter import is_success

if TYPE_CHECKING:
    from web3.contract import Contract

    from .KeeperConfig import KeeperConfig
    from .LedgerUtility import LedgerUtility
    from .TxSubmitter import TxSubmitter

logger = logging.getLogger(__name__)

ZERO_BYTES32 = "0x" + "00" * 32

# Revert reasons the controller uses for "delay has not elapsed" (OZ 4.x / 5.x)
NOT_READY_MARKERS = (
    "operation is not ready",
    "TimelockUnexpectedOperationState",
)


def operation_salt(base: str, index: int) -> str:
    """Salt for the index-th proposal of an otherwise identical call.

    Index 0 is the configured salt itself.

    :param base: Configured salt (hex bytes32).
    :param index: Number of identical operations already executed.
    :returns: Salt as hex bytes32.
    """
    if index == 0:
        return base
    return Web3.solidity_keccak(["bytes32", "uint256"], [base, index]).to_0x_hex()


class TimelockError(Exception):
    """Base exception for timelock failures.

    :ivar reason: Revert reason reported by the ledger.
    :ivar receipt: Receipt of the failed transaction.
    """

    def __init__(self, message: str, reason: str = "", receipt: TxReceipt | None = None):
        self.reason = reason
        self.receipt = receipt
        super().__init__(message)


class TimelockScheduleError(TimelockError):
    """Raised when the schedule transaction reverts."""

    pass


class TimelockNotReadyError(TimelockError):
    """Raised when execution is attempted before the delay has elapsed."""

    pass


class TimelockExecutionError(TimelockError):
    """Raised when execution reverts for a substantive reason."""

    pass


@dataclass
class ScheduledAction:
    """Handle to a proposal living on the timelock.

    :ivar operation_id: Operation id from hashOperation.
    :ivar target: Address of the contract the action calls.
    :ivar method: Target function name.
    :ivar args: Target function arguments.
    :ivar data: Encoded call data.
    :ivar predecessor: Required predecessor operation (zero for none).
    :ivar salt: Operation salt (derived per repeat of the same call).
    :ivar ready_at: Earliest execution timestamp.
    :ivar receipt: Receipt of the schedule transaction, if sent this run.
    :ivar executed: True once the action has been executed.
    """

    operation_id: Any
    target: str
    method: str
    args: tuple
    data: Any
    predecessor: str
    salt: str
    ready_at: int
    receipt: TxReceipt | None = None
    executed: bool = False

    def describe(self) -> str:
        return f"{self.method}{list(self.args)} on {self.target}"


class TimelockScheduler:
    """Schedules and executes privileged calls through a timelock.

    :ivar config: Keeper configuration (live flag, salt).
    :ivar timelock: TimelockController contract.
    :ivar submitter: Submitter used for schedule/execute transactions.
    :ivar ledger: Ledger used for revert reasons and time travel.
    :ivar role: Signer role holding the proposer/executor roles.
    """

    def __init__(
        self,
        config: KeeperConfig,
        timelock: Contract,
        submitter: TxSubmitter,
        ledger: LedgerUtility,
        role: str = DEPLOYER_ROLE,
    ) -> None:
        self.config = config
        self.timelock = timelock
        self.submitter = submitter
        self.ledger = ledger
        self.role = role
        self.salt = config.timelock_salt

    def min_delay(self) -> int:
        return self.timelock.functions.getMinDelay().call()

    def is_ready(self, action: ScheduledAction) -> bool:
        return self.timelock.functions.isOperationReady(action.operation_id).call()

    def is_done(self, action: ScheduledAction) -> bool:
        return self.timelock.functions.isOperationDone(action.operation_id).call()

    async def schedule(
        self, target: Contract, method: str, args: Sequence[Any]
    ) -> ScheduledAction:
        """Propose a call on the timelock.

        If the identical operation is already pending on the timelock, the
        existing proposal is returned and nothing is sent. An identical call
        that was executed before is proposed again under the next salt.

        :param target: Contract the action will call.
        :param method: Target function name.
        :param args: Target function arguments.
        :returns: Handle to the scheduled action.
        :raises TimelockScheduleError: If the schedule transaction reverts.
        """
        data = encode_call(target, method, args)

        index = 0
        while True:
            salt = operation_salt(self.salt, index)
            operation_id = self.timelock.functions.hashOperation(
                target.address, 0, data, ZERO_BYTES32, salt
            ).call()
            known = self.timelock.functions.isOperation(operation_id).call()
            if not known:
                break
            if not self.timelock.functions.isOperationDone(operation_id).call():
                break
            logger.debug(f"Operation with salt {salt} already executed")
            index += 1

        action = ScheduledAction(
            operation_id=operation_id,
            target=target.address,
            method=method,
            args=tuple(args),
            data=data,
            predecessor=ZERO_BYTES32,
            salt=salt,
            ready_at=0,
        )

        if known:
            action.ready_at = self.timelock.functions.getTimestamp(operation_id).call()
            logger.info(
                f"Timelock already has pending {action.describe()} "
                f"(ready_at={action.ready_at})"
            )
            return action

        delay = self.min_delay()
        logger.info(f"Scheduling {action.describe()} with delay {delay}s")
        receipt = await self.submitter.submit(
            self.timelock,
            "schedule",
            [target.address, 0, data, ZERO_BYTES32, salt, delay],
            role=self.role,
        )
        if not is_success(receipt):
            reason = self.ledger.revert_reason(receipt)
            raise TimelockScheduleError(
                f"Scheduling {action.describe()} reverted: {reason}", reason, receipt
            )

        action.receipt = receipt
        action.ready_at = self.timelock.functions.getTimestamp(operation_id).call()
        logger.info(f"Scheduled {action.describe()}, executable at {action.ready_at}")
        return action

    async def execute_scheduled(self, action: ScheduledAction) -> TxReceipt:
        """Execute a scheduled action.

        Execution before the delay is rejected by the timelock; the revert
        reason is surfaced untouched so callers can tell timing failures from
        substantive ones.

        :param action: Handle returned by schedule().
        :returns: Receipt of the execute transaction.
        :raises TimelockNotReadyError: If the delay has not elapsed.
        :raises TimelockExecutionError: If execution reverts for another reason.
        """
        logger.info(f"Executing scheduled {action.describe()}")
        receipt = await self.submitter.submit(
            self.timelock,
            "execute",
            [action.target, 0, action.data, action.predecessor, action.salt],
            role=self.role,
        )
        if not is_success(receipt):
            reason = self.ledger.revert_reason(receipt)
            if any(marker in reason for marker in NOT_READY_MARKERS):
                raise TimelockNotReadyError(
                    f"{action.describe()} is not executable yet: {reason}",
                    reason,
                    receipt,
                )
            raise TimelockExecutionError(
                f"Execution of {action.describe()} reverted: {reason}", reason, receipt
            )

        action.executed = True
        logger.info(f"Executed {action.describe()}")
        return receipt

    async def settle(self, action: ScheduledAction) -> bool:
        """Drive a proposal as far as the environment allows.

        On local networks ledger time is fast-forwarded past the delay and the
        action executed immediately. On live networks it is executed only if
        the delay has already elapsed; otherwise it is left for a later run.

        :param action: Handle returned by schedule().
        :returns: True if the action is executed.
        """
        if action.executed:
            return True

        if not self.config.is_live:
            remaining = action.ready_at - self.ledger.latest_timestamp()
            if remaining > 0:
                self.ledger.increase_time(remaining + 1)
            await self.execute_scheduled(action)
            return True

        if self.is_ready(action):
            await self.execute_scheduled(action)
            return True

        logger.info(
            f"{action.describe()} pending until {action.ready_at}; "
            "execute it in a later run"
        )
        return False
