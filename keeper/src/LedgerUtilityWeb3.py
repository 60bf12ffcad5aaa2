"""LedgerUtilityWeb3: Ledger access over JSON-RPC with local signing keys."""

from __future__ import annotations

import logging
from typing import Any

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound
from web3.types import TxParams, TxReceipt

from .KeeperConfig import ConfigError
from .LedgerUtility import LedgerUtility, SignedTx

logger = logging.getLogger(__name__)


class LedgerUtilityWeb3(LedgerUtility):
    """Ledger implementation for live networks.

    Signs transactions locally with one key per role and broadcasts them with
    ``eth_sendRawTransaction``.

    :ivar w3: Web3 instance connected to the target network.
    :ivar accounts: Dict mapping role to local signing account.
    :ivar fallback_gas_limit: Gas limit used when estimation reverts.
    """

    def __init__(
        self,
        w3: Web3,
        accounts: dict[str, LocalAccount],
        fallback_gas_limit: int = 3_000_000,
    ) -> None:
        """Initialize the ledger utility.

        :param w3: Connected Web3 instance.
        :param accounts: Dict mapping role to signing account.
        :param fallback_gas_limit: Gas limit used when estimation reverts.
        """
        self.w3 = w3
        self.accounts = accounts
        self.fallback_gas_limit = fallback_gas_limit

    def get_address(self, role: str) -> str:
        account = self.accounts.get(role)
        if account is None:
            raise ConfigError(f"No signer configured for role '{role}'")
        return account.address

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return self.w3.eth.get_transaction_count(
            Web3.to_checksum_address(address), block
        )

    def gas_price(self) -> int:
        return self.w3.eth.gas_price

    def _estimate_gas(self, tx: TxParams) -> int:
        """Estimate gas, falling back to a fixed limit if the call reverts.

        A reverting call still gets broadcast so the revert is mined and
        reported as a receipt.
        """
        try:
            return self.w3.eth.estimate_gas(tx)
        except ContractLogicError as e:
            logger.warning(
                f"Gas estimation reverted ({e}); using fallback limit "
                f"{self.fallback_gas_limit}"
            )
            return self.fallback_gas_limit

    def sign_transaction(self, tx: TxParams, role: str) -> SignedTx:
        account = self.accounts.get(role)
        if account is None:
            raise ConfigError(f"No signer configured for role '{role}'")

        params: dict = dict(tx)
        params["from"] = account.address
        params["to"] = Web3.to_checksum_address(params["to"])
        params.setdefault("value", 0)
        params.setdefault("chainId", self.w3.eth.chain_id)
        if "gas" not in params:
            params["gas"] = self._estimate_gas(params)

        signed = account.sign_transaction(params)
        return SignedTx(tx_hash=signed.hash.to_0x_hex(), raw=signed.raw_transaction)

    def send_raw_transaction(self, raw: Any) -> str:
        return self.w3.eth.send_raw_transaction(raw).to_0x_hex()

    def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    def call(self, tx: TxParams) -> Any:
        return self.w3.eth.call(tx)

    def revert_reason(self, receipt: TxReceipt) -> str:
        """Replay the failed transaction at its block to recover the reason."""
        tx = self.w3.eth.get_transaction(receipt["transactionHash"])
        replay: TxParams = {
            "from": tx["from"],
            "to": tx["to"],
            "data": tx["input"],
            "value": tx["value"],
            "gas": tx["gas"],
        }
        try:
            self.w3.eth.call(replay, receipt["blockNumber"])
        except ContractLogicError as e:
            return str(e.message or e)
        return ""

    def latest_timestamp(self) -> int:
        return self.w3.eth.get_block("latest")["timestamp"]

    def increase_time(self, seconds: int) -> None:
        raise NotImplementedError("increase_time is not supported on live networks")
