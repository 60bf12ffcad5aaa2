"""DeploymentRegistry: Named deployment records persisted across runs.

Records are stored one JSON file per name under
``<root>/<network>/<name>.json``, the layout hardhat-deploy writes, so the
keeper can read deployments produced by the contract tooling directly.

When a module is upgraded, the superseded record is archived under a derived
name (``"<symbol>-prev"``) so a later run can still diff against it.

.. code-block:: python

    >>> registry = DeploymentRegistry("deployments", "moonriver")
    >>> registry.exists("USDC-Vault-0.2")
    False
    >>> archive_name("USDCmovrSUSHIsolar")
    'USDCmovrSUSHIsolar-prev'
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = "-prev"


class DeploymentNotFoundError(Exception):
    """Raised when a named deployment record does not exist."""

    pass


def archive_name(symbol: str) -> str:
    """Derive the name a superseded record is archived under.

    :param symbol: Module symbol.
    :returns: Archive record name.
    """
    return f"{symbol}{ARCHIVE_SUFFIX}"


@dataclass(frozen=True)
class DeploymentRecord:
    """A deployed contract instance.

    :ivar name: Registry name (module symbol for strategies).
    :ivar address: Contract address.
    :ivar abi: Contract ABI.
    :ivar predecessor: Name of the archived record this one superseded.
    """

    name: str
    address: str
    abi: list = field(default_factory=list, compare=False, repr=False)
    predecessor: str | None = None

    def renamed(self, name: str) -> DeploymentRecord:
        """Return a copy of this record under a different name."""
        return replace(self, name=name)

    def to_json(self) -> dict:
        data: dict = {"address": self.address, "abi": self.abi}
        if self.predecessor:
            data["predecessor"] = self.predecessor
        return data

    @classmethod
    def from_json(cls, name: str, data: dict) -> DeploymentRecord:
        """Build a record from a hardhat-deploy style JSON document.

        :param name: Registry name.
        :param data: Parsed JSON with at least "address".
        :returns: New DeploymentRecord.
        :raises ValueError: If the document has no address.
        """
        if not data.get("address"):
            raise ValueError(f"Deployment '{name}' has no address")
        return cls(
            name=name,
            address=data["address"],
            abi=data.get("abi", []),
            predecessor=data.get("predecessor"),
        )


class DeploymentRegistry:
    """File-backed registry of deployment records for one network.

    :ivar path: Directory holding this network's records.
    """

    def __init__(self, root: str | Path, network: str) -> None:
        """Initialize the registry.

        :param root: Deployments root directory.
        :param network: Network name (subdirectory).
        """
        self.path = Path(root) / network

    def _file(self, name: str) -> Path:
        return self.path / f"{name}.json"

    def exists(self, name: str) -> bool:
        """Check whether a record exists."""
        return self._file(name).is_file()

    def get(self, name: str) -> DeploymentRecord:
        """Load a record by name.

        :param name: Record name.
        :returns: DeploymentRecord.
        :raises DeploymentNotFoundError: If no record is stored under name.
        """
        file = self._file(name)
        if not file.is_file():
            raise DeploymentNotFoundError(f"No deployment found for: {name}")
        with open(file, "r") as f:
            return DeploymentRecord.from_json(name, json.load(f))

    def names(self) -> list[str]:
        """List stored record names, excluding archived predecessors."""
        if not self.path.is_dir():
            return []
        return sorted(
            file.stem
            for file in self.path.glob("*.json")
            if not file.stem.endswith(ARCHIVE_SUFFIX)
        )

    def get_or_none(self, name: str) -> DeploymentRecord | None:
        """Load a record by name, returning None if it does not exist."""
        try:
            return self.get(name)
        except DeploymentNotFoundError:
            return None

    def save(self, name: str, record: DeploymentRecord) -> DeploymentRecord:
        """Persist a record under name, replacing any existing one.

        The file is written atomically so an interrupted run never leaves a
        truncated record behind.

        :param name: Record name.
        :param record: Record to store.
        :returns: The stored record (renamed to name).
        """
        stored = record if record.name == name else record.renamed(name)
        self.path.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self.path, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(stored.to_json(), f, indent=2)
            os.replace(tmp_path, self._file(name))
        except BaseException:
            os.unlink(tmp_path)
            raise

        logger.debug(f"Saved deployment {name} at {stored.address}")
        return stored
