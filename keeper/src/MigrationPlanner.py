"""MigrationPlanner: Pure decision logic for strategy upgrades.

The vault's trust flags and withdrawal queue double as durable coordination
state, so the plan is re-derived from a fresh LedgerSnapshot on every run
instead of being checkpointed. Running the keeper twice therefore never
migrates twice.

Decision tree:
    - no previous record                         -> INSTALL
    - no archived predecessor, or same address   -> NOOP
    - predecessor belongs to another vault       -> SKIP
    - candidate trusted and predecessor not      -> NOOP (already migrated)
    - otherwise                                  -> MIGRATE at predecessor's index

.. code-block:: python

    >>> snapshot = LedgerSnapshot(
    ...     symbol="USDCavaxJOEqi", vault="0xV", candidate="0xB",
    ...     previous="0xA", archived="0xA", archived_vault="0xV",
    ...     candidate_trusted=False, archived_trusted=True,
    ...     withdrawal_queue=("0xX", "0xA", "0xY"),
    ... )
    >>> plan = plan_migration(snapshot)
    >>> plan.action, plan.index
    (<PlanAction.MIGRATE: 'migrate'>, 1)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .ContractUtility import same_address


class PlanAction(str, Enum):
    """What the keeper will do for one strategy this run."""

    INSTALL = "install"
    NOOP = "noop"
    MIGRATE = "migrate"
    SKIP = "skip"


@dataclass(frozen=True)
class LedgerSnapshot:
    """Everything a plan depends on, read from the ledger and registry.

    :ivar symbol: Strategy symbol.
    :ivar vault: Vault address.
    :ivar candidate: Address of the deployment that should be active.
    :ivar previous: Current registry record's address before this run, if any.
    :ivar archived: Address of the archived predecessor record, if any.
    :ivar archived_vault: Vault the archived predecessor points to.
    :ivar candidate_trusted: Vault trust flag for the candidate.
    :ivar archived_trusted: Vault trust flag for the archived predecessor.
    :ivar withdrawal_queue: Vault's ordered withdrawal queue.
    """

    symbol: str
    vault: str
    candidate: str
    previous: str | None
    archived: str | None
    archived_vault: str | None
    candidate_trusted: bool
    archived_trusted: bool
    withdrawal_queue: tuple[str, ...]


@dataclass(frozen=True)
class MigrationPlan:
    """The keeper's decision for one strategy.

    :ivar action: Plan action.
    :ivar symbol: Strategy symbol.
    :ivar vault: Vault address.
    :ivar candidate: Candidate address.
    :ivar previous: Module being replaced (MIGRATE only).
    :ivar index: Withdrawal queue position for the candidate (MIGRATE only).
    :ivar needs_trust: Candidate must be trusted (INSTALL only).
    :ivar needs_queue: Candidate must be queued (INSTALL only).
    :ivar reason: Human-readable explanation for logs.
    """

    action: PlanAction
    symbol: str
    vault: str
    candidate: str
    previous: str | None = None
    index: int | None = None
    needs_trust: bool = False
    needs_queue: bool = False
    reason: str = ""

    @property
    def is_mutating(self) -> bool:
        if self.action is PlanAction.MIGRATE:
            return True
        return self.action is PlanAction.INSTALL and (self.needs_trust or self.needs_queue)


def queue_position(queue: tuple[str, ...], address: str) -> int | None:
    """Index of address in the withdrawal queue, or None if absent."""
    for i, entry in enumerate(queue):
        if same_address(entry, address):
            return i
    return None


def plan_migration(snapshot: LedgerSnapshot) -> MigrationPlan:
    """Decide what to do for one strategy.

    :param snapshot: Ledger and registry reads for the strategy.
    :returns: MigrationPlan.
    """
    base = {
        "symbol": snapshot.symbol,
        "vault": snapshot.vault,
        "candidate": snapshot.candidate,
    }

    if snapshot.previous is None:
        in_queue = queue_position(snapshot.withdrawal_queue, snapshot.candidate) is not None
        return MigrationPlan(
            action=PlanAction.INSTALL,
            needs_trust=not snapshot.candidate_trusted,
            needs_queue=not in_queue,
            reason="new deployment",
            **base,
        )

    if snapshot.archived is None or same_address(snapshot.archived, snapshot.candidate):
        return MigrationPlan(
            action=PlanAction.NOOP,
            reason="no previous deployment to migrate from",
            **base,
        )

    if not same_address(snapshot.archived_vault, snapshot.vault):
        return MigrationPlan(
            action=PlanAction.SKIP,
            previous=snapshot.archived,
            reason="previous deployment does not match current vault",
            **base,
        )

    if snapshot.candidate_trusted and not snapshot.archived_trusted:
        return MigrationPlan(
            action=PlanAction.NOOP,
            previous=snapshot.archived,
            reason="migration already completed",
            **base,
        )

    position = queue_position(snapshot.withdrawal_queue, snapshot.archived)
    index = position if position is not None else len(snapshot.withdrawal_queue)
    return MigrationPlan(
        action=PlanAction.MIGRATE,
        previous=snapshot.archived,
        index=index,
        reason=f"migrating {snapshot.archived} to {snapshot.candidate}",
        **base,
    )
