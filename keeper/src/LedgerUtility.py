"""LedgerUtility: Abstract base class for ledger RPC interaction."""

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

from web3.types import TxParams, TxReceipt


@dataclass(frozen=True)
class SignedTx:
    """A signed transaction and the hash it will have on chain.

    :ivar tx_hash: Transaction hash as hex string.
    :ivar raw: Payload accepted by send_raw_transaction.
    """

    tx_hash: str
    raw: Any


class LedgerUtility:
    """Abstract base class for ledger implementations.

    Provides the narrow surface the keeper needs from a node: signer lookup,
    nonces, native fee suggestion, broadcast, receipts and (on local networks)
    time travel.
    """

    @abstractmethod
    def get_address(self, role: str) -> str:
        """Resolve the signer address for a role.

        :param role: Signer role (e.g., "deployer", "manager").
        :returns: Checksummed address.
        :raises ConfigError: If no signer is configured for the role.
        """
        pass

    @abstractmethod
    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Fetch the transaction count (next nonce) for an address.

        :param address: Account address.
        :param block: "latest" for confirmed count, "pending" to include mempool.
        :returns: Transaction count.
        """
        pass

    @abstractmethod
    def gas_price(self) -> int:
        """Fetch the node's own gas price suggestion in wei."""
        pass

    @abstractmethod
    def sign_transaction(self, tx: TxParams, role: str) -> SignedTx:
        """Sign a transaction with the role's key without broadcasting it.

        :param tx: Transaction parameters including nonce and gasPrice.
        :param role: Signer role.
        :returns: Signed transaction with its hash.
        :raises ConfigError: If no signer is configured for the role.
        """
        pass

    @abstractmethod
    def send_raw_transaction(self, raw: Any) -> str:
        """Broadcast a signed transaction.

        Sending the same payload twice is safe: the node answers the second
        time with "already known" or, once mined, "nonce too low".

        :param raw: Payload from sign_transaction.
        :returns: Transaction hash as hex string.
        """
        pass

    def send_transaction(self, tx: TxParams, role: str) -> str:
        """Sign a transaction with the role's key and broadcast it.

        :param tx: Transaction parameters including nonce and gasPrice.
        :param role: Signer role.
        :returns: Transaction hash as hex string.
        """
        return self.send_raw_transaction(self.sign_transaction(tx, role).raw)

    @abstractmethod
    def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        """Look up a receipt by hash.

        :param tx_hash: Transaction hash.
        :returns: Receipt, or None if not (yet) mined.
        """
        pass

    @abstractmethod
    def call(self, tx: TxParams) -> Any:
        """Dry-run a transaction against the latest state.

        :param tx: Transaction parameters.
        :returns: Raw call result.
        :raises ContractLogicError: If the call reverts.
        """
        pass

    @abstractmethod
    def revert_reason(self, receipt: TxReceipt) -> str:
        """Recover the revert reason of a mined, failed transaction.

        :param receipt: Receipt with non-success status.
        :returns: Revert reason as reported by the node, or "" if unknown.
        """
        pass

    @abstractmethod
    def latest_timestamp(self) -> int:
        """Timestamp of the latest block."""
        pass

    @abstractmethod
    def increase_time(self, seconds: int) -> None:
        """Advance ledger time and mine a block (local networks only).

        :param seconds: Seconds to fast-forward.
        """
        pass
