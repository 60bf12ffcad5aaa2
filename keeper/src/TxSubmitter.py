"""TxSubmitter: Transaction submission with same-nonce fee replacement.

Each call is tracked as a PendingCall keyed by (sender, nonce). The state
machine is::

    Pending(attempt 1) -> Pending(attempt 2, supersedes 1) -> ... -> Confirmed

Algorithm:
    1. Resolve the signer and price the call via GasPriceOracle
    2. Read the pending nonce once; every attempt of the call reuses it
    3. Poll for a receipt until max_tx_time elapses
    4. On timeout, re-read the confirmed nonce; if it did not move, rebroadcast
       the same call at the same nonce with the fee multiplied by gas_bump
    5. Give up with TxTimeoutError after max_replacements replacements

A receipt is always a confirmed outcome: status 1 is success, anything else is
an on-chain revert and is returned as data for the caller to judge.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Sequence

from web3.exceptions import ContractLogicError, Web3Exception
from web3.types import TxParams, TxReceipt

from .ContractUtility import encode_call
from .KeeperConfig import DEPLOYER_ROLE

if TYPE_CHECKING:
    from web3.contract import Contract

    from .GasPriceOracle import GasPriceOracle
    from .KeeperConfig import KeeperConfig
    from .LedgerUtility import LedgerUtility

logger = logging.getLogger(__name__)

BACKOFF_MAX = 30.0

# Node answers to a resent payload that already reached the mempool or a block
DUPLICATE_BROADCAST_MARKERS = ("already known", "nonce too low")


class TxError(Exception):
    """Base exception for submission failures."""

    pass


class TxBroadcastError(TxError):
    """Raised when the node keeps rejecting a broadcast.

    Earlier attempts of the call may still be pending and confirm later.

    :ivar pending: The PendingCall whose broadcast failed.
    """

    def __init__(self, message: str, pending: PendingCall | None = None):
        self.pending = pending
        super().__init__(message)


class TxTimeoutError(TxError):
    """Raised when a call is still unconfirmed after the last replacement.

    :ivar pending: The PendingCall that never confirmed.
    """

    def __init__(self, message: str, pending: PendingCall):
        self.pending = pending
        super().__init__(message)


class NonceConsumedError(TxError):
    """Raised when the nonce confirmed with a transaction we did not send."""

    pass


def bump_gas_price(price: int, multiplier: float) -> int:
    """Apply the replacement multiplier, rounding half up.

    The result is always strictly greater than price so the node accepts it
    as a replacement.

    .. code-block:: python

        >>> bump_gas_price(333_000_000_000, 1.11)
        369630000000
    """
    bumped = (Decimal(price) * Decimal(str(multiplier))).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(int(bumped), price + 1)


def is_duplicate_broadcast(error: Exception) -> bool:
    """True if the node rejected a payload it has already seen."""
    message = str(error).lower()
    return any(marker in message for marker in DUPLICATE_BROADCAST_MARKERS)


def is_success(receipt: TxReceipt | None) -> bool:
    """True if the receipt reports on-chain success."""
    return receipt is not None and receipt.get("status") == 1


def format_hash(value: Any) -> str:
    """Render a transaction hash (str or HexBytes) as 0x-prefixed hex."""
    if hasattr(value, "to_0x_hex"):
        return value.to_0x_hex()
    return str(value)


@dataclass
class PendingCall:
    """A call in flight, owned by the submitter until it confirms.

    :ivar target: Destination contract address.
    :ivar method: Contract function name.
    :ivar args: Function arguments.
    :ivar data: Encoded call data.
    :ivar role: Signer role.
    :ivar sender: Signer address.
    :ivar nonce: Nonce shared by every attempt.
    :ivar gas_price: Fee of the most recent attempt.
    :ivar submitted_at: Unix time of the most recent broadcast.
    :ivar replacements: Number of replacements broadcast so far.
    :ivar tx_hashes: Hash of every signed attempt, oldest first.
    """

    target: str
    method: str
    args: tuple
    data: Any
    role: str
    sender: str
    nonce: int
    gas_price: int
    submitted_at: float = 0.0
    replacements: int = 0
    value: int = 0
    tx_hashes: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, int]:
        return (self.sender.lower(), self.nonce)

    def to_tx(self) -> TxParams:
        return {
            "from": self.sender,
            "to": self.target,
            "data": self.data,
            "nonce": self.nonce,
            "gasPrice": self.gas_price,
            "value": self.value,
        }

    def bump(self, multiplier: float) -> int:
        """Raise the fee for a replacement attempt.

        :param multiplier: Fee multiplier.
        :returns: New gas price.
        """
        self.gas_price = bump_gas_price(self.gas_price, multiplier)
        self.replacements += 1
        return self.gas_price

    def describe(self) -> str:
        return f"{self.method} -> {self.target} (role={self.role}, nonce={self.nonce})"


class TxSubmitter:
    """Submits contract calls and replaces them until they confirm.

    :ivar config: Keeper configuration (deadlines, bump, retry ceilings).
    :ivar ledger: Ledger used for nonces, broadcast and receipts.
    :ivar gas_oracle: Oracle pricing each call.
    """

    def __init__(
        self,
        config: KeeperConfig,
        ledger: LedgerUtility,
        gas_oracle: GasPriceOracle,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.gas_oracle = gas_oracle
        self._pending: dict[tuple[str, int], PendingCall] = {}

    async def submit(
        self,
        target: Contract,
        method: str,
        args: Sequence[Any] = (),
        *,
        role: str = DEPLOYER_ROLE,
        tier: str = "normal",
        value: int = 0,
    ) -> TxReceipt:
        """Submit a contract call and wait until one attempt confirms.

        :param target: Contract to call.
        :param method: Contract function name.
        :param args: Function arguments.
        :param role: Signer role (default: deployer).
        :param tier: Fee tier for the first attempt (default: "normal").
        :param value: Native value to send.
        :returns: Receipt of the confirmed attempt (success or revert).
        :raises ConfigError: If the role has no signer.
        :raises TxBroadcastError: If broadcasting keeps failing.
        :raises TxTimeoutError: If no attempt confirms before the ceiling.
        """
        sender = self.ledger.get_address(role)
        data = encode_call(target, method, args)
        gas_price = await self.gas_oracle.get_fee_price(self.config.fee_chain, tier)
        nonce = self.ledger.get_transaction_count(sender, "pending")

        call = PendingCall(
            target=target.address,
            method=method,
            args=tuple(args),
            data=data,
            role=role,
            sender=sender,
            nonce=nonce,
            gas_price=gas_price,
            value=value,
        )
        logger.info(f"Submitting {call.describe()} args={list(call.args)} gasPrice={gas_price}")

        key = call.key
        if key in self._pending:
            raise TxError(f"Nonce {nonce} of {sender} already has a call in flight")
        self._pending[key] = call
        try:
            receipt = await self._drive(call)
        finally:
            self._pending.pop(key, None)

        self._log_outcome(call, receipt)
        return receipt

    async def submit_if_needed(
        self,
        target: Contract,
        method: str,
        args: Sequence[Any] = (),
        *,
        role: str = DEPLOYER_ROLE,
        tier: str = "normal",
    ) -> TxReceipt | None:
        """Submit a call only if a dry run says it would succeed.

        :returns: Receipt, or None when the dry run reverts (no transaction
            needed).
        """
        tx: TxParams = {
            "from": self.ledger.get_address(role),
            "to": target.address,
            "data": encode_call(target, method, args),
        }
        try:
            self.ledger.call(tx)
        except ContractLogicError as e:
            logger.info(f"{method} on {target.address} not necessary: {e}")
            return None
        return await self.submit(target, method, args, role=role, tier=tier)

    async def _drive(self, call: PendingCall) -> TxReceipt:
        """Broadcast and replace until an attempt confirms."""
        while True:
            await self._broadcast(call)

            receipt = await self._wait_for_receipt(call)
            if receipt is not None:
                return receipt

            if self._nonce_consumed(call):
                # Something at our nonce confirmed; its receipt may lag
                logger.info(f"Nonce {call.nonce} confirmed, waiting for receipt of {call.method}")
                receipt = await self._wait_for_receipt(call)
                if receipt is not None:
                    return receipt
                raise NonceConsumedError(
                    f"Nonce {call.nonce} of {call.sender} was used by another transaction"
                )

            if call.replacements >= self.config.max_replacements:
                raise TxTimeoutError(
                    f"{call.describe()} unconfirmed after "
                    f"{call.replacements} replacements",
                    call,
                )

            previous = call.gas_price
            call.bump(self.config.gas_bump)
            logger.warning(
                f"{call.describe()} not confirmed after {self.config.max_tx_time}s, "
                f"replacing (gasPrice {previous} -> {call.gas_price})"
            )

    async def _broadcast(self, call: PendingCall) -> None:
        """Sign the current attempt and broadcast it with bounded retries.

        The attempt is signed once at the call's nonce and its hash recorded
        before the first send, so a send whose response was lost is still
        tracked. Retries resend the identical payload.

        :raises TxBroadcastError: If every retry fails.
        """
        retries = self.config.broadcast_retries
        last_error: Exception | None = None

        signed = self.ledger.sign_transaction(call.to_tx(), call.role)
        call.tx_hashes.append(signed.tx_hash)

        for attempt in range(retries):
            try:
                self.ledger.send_raw_transaction(signed.raw)
            except (Web3Exception, ValueError, OSError) as e:
                last_error = e
                if attempt > 0 and is_duplicate_broadcast(e):
                    logger.info(
                        f"{format_hash(signed.tx_hash)} already reached the node ({e})"
                    )
                    break
                if self._nonce_consumed(call):
                    logger.info(
                        f"Nonce {call.nonce} already confirmed, not replacing {call.method}"
                    )
                    return
                logger.warning(
                    f"Broadcast of {call.describe()} failed: {e} "
                    f"(attempt {attempt + 1}/{retries})"
                )
                if attempt + 1 < retries:
                    delay = min(self.config.broadcast_backoff * (1.5 ** attempt), BACKOFF_MAX)
                    await asyncio.sleep(delay)
                continue
            break
        else:
            raise TxBroadcastError(
                f"Broadcast of {call.describe()} failed after {retries} attempts: {last_error}",
                call,
            )

        call.submitted_at = time.time()
        logger.info(
            f"Broadcast {call.method} attempt {len(call.tx_hashes)}: "
            f"{format_hash(signed.tx_hash)} (gasPrice={call.gas_price})"
        )

    async def _wait_for_receipt(self, call: PendingCall) -> TxReceipt | None:
        """Poll every attempt's receipt, newest first, until the deadline.

        :returns: Receipt of the attempt that confirmed, or None on timeout.
        """
        deadline = time.monotonic() + self.config.max_tx_time
        while True:
            for tx_hash in reversed(call.tx_hashes):
                try:
                    receipt = self.ledger.get_receipt(tx_hash)
                except (Web3Exception, OSError) as e:
                    logger.debug(f"Receipt lookup for {format_hash(tx_hash)} failed: {e}")
                    continue
                if receipt is not None:
                    return receipt

            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(self.config.poll_interval)

    def _nonce_consumed(self, call: PendingCall) -> bool:
        return self.ledger.get_transaction_count(call.sender, "latest") > call.nonce

    def _log_outcome(self, call: PendingCall, receipt: TxReceipt) -> None:
        tx_hash = format_hash(receipt.get("transactionHash"))
        if is_success(receipt):
            logger.info(
                f"{call.describe()} confirmed in block {receipt.get('blockNumber')} "
                f"(tx {tx_hash}, attempts={len(call.tx_hashes)})"
            )
        else:
            logger.warning(
                f"{call.describe()} reverted on-chain "
                f"(tx {tx_hash}, status={receipt.get('status')})"
            )
