"""In-memory balance book and the all-or-nothing unit of work."""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from crossvenue.src.engine.exceptions import InsufficientBalance

logger = logging.getLogger(__name__)


@runtime_checkable
class Transactional(Protocol):
    """Anything whose state can be captured before a unit of work and put back after."""

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


@runtime_checkable
class AssetScoped(Protocol):
    """Transactional state that can be narrowed to a set of assets."""

    def scope(self, assets: Iterable[str]) -> "AssetScope":
        ...


@runtime_checkable
class Reconciling(Protocol):
    """State that cannot be restored but can be brought back in line after a rollback."""

    def checkpoint(self) -> Any:
        ...

    def reconcile(self, checkpoint: Any) -> None:
        ...


class AssetScope:
    """Snapshot and restore of ``target`` limited to ``assets``.

    ``target`` must accept an ``assets`` keyword on both ``snapshot`` and
    ``restore``; entries for any other asset are never read or written.
    """

    def __init__(self, target: Any, assets: Iterable[str]) -> None:
        self.target = target
        self.assets: FrozenSet[str] = frozenset(assets)

    def snapshot(self) -> Any:
        return self.target.snapshot(assets=self.assets)

    def restore(self, state: Any) -> None:
        self.target.restore(state, assets=self.assets)

    def __repr__(self) -> str:
        return f"AssetScope({self.target!r}, {sorted(self.assets)})"


class Ledger:
    """Balances keyed by holder and asset.

    Every holder (executor, manager, venue, operator wallet) is identified by a
    plain string address.
    """

    def __init__(self, balances: Optional[Dict[str, Dict[str, int]]] = None) -> None:
        self._lock = threading.RLock()
        self._balances: Dict[str, Dict[str, int]] = defaultdict(dict)
        for holder, assets in (balances or {}).items():
            for asset, amount in assets.items():
                self.mint(holder, asset, amount)

    def balance_of(self, holder: str, asset: str) -> int:
        with self._lock:
            return self._balances.get(holder, {}).get(asset, 0)

    def balances(self, holder: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._balances.get(holder, {}))

    def mint(self, holder: str, asset: str, amount: int) -> None:
        """Credit ``amount`` of ``asset`` to ``holder`` out of thin air (funding, tests)."""

        if amount < 0:
            raise ValueError("amount must not be negative")
        with self._lock:
            account = self._balances[holder]
            account[asset] = account.get(asset, 0) + amount

    def burn(self, holder: str, asset: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        with self._lock:
            balance = self.balance_of(holder, asset)
            if balance < amount:
                raise InsufficientBalance(holder, asset, amount, balance)
            self._balances[holder][asset] = balance - amount

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        if amount == 0:
            return
        with self._lock:
            balance = self.balance_of(sender, asset)
            if balance < amount:
                raise InsufficientBalance(sender, asset, amount, balance)
            self._balances[sender][asset] = balance - amount
            target = self._balances[recipient]
            target[asset] = target.get(asset, 0) + amount
        logger.debug("Transferred %d %s from %s to %s", amount, asset, sender, recipient)

    def total_supply(self, asset: str) -> int:
        with self._lock:
            return sum(assets.get(asset, 0) for assets in self._balances.values())

    def snapshot(self, assets: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, int]]:
        """Copy of every balance, or only the balances of ``assets``."""

        with self._lock:
            if assets is None:
                return {holder: dict(held) for holder, held in self._balances.items()}
            wanted = frozenset(assets)
            return {
                holder: {asset: amount for asset, amount in held.items() if asset in wanted}
                for holder, held in self._balances.items()
            }

    def restore(
        self, state: Dict[str, Dict[str, int]], assets: Optional[Iterable[str]] = None
    ) -> None:
        with self._lock:
            if assets is None:
                self._balances = defaultdict(dict)
                for holder, held in state.items():
                    self._balances[holder] = dict(held)
                return

            wanted = frozenset(assets)
            for held in self._balances.values():
                for asset in wanted.intersection(held):
                    del held[asset]
            for holder, held in state.items():
                target = self._balances[holder]
                for asset, amount in held.items():
                    if asset in wanted:
                        target[asset] = amount
            # holders that first appeared inside the scope
            for holder in [h for h, held in self._balances.items() if not held and h not in state]:
                del self._balances[holder]

    def scope(self, assets: Iterable[str]) -> AssetScope:
        return AssetScope(self, assets)


class UnitOfWork:
    """Snapshot every participant on entry and restore them all if the block raises.

    With ``assets`` set, participants that support it are narrowed to those
    assets so that a rollback never touches balances of unrelated assets.
    Participants that cannot be restored but implement :class:`Reconciling`
    are reconciled after every restore has run. Anything else is skipped;
    its side effects cannot be undone and are the caller's responsibility.
    """

    def __init__(
        self,
        participants: Iterable[Any],
        *,
        name: str = "unit of work",
        assets: Optional[Iterable[str]] = None,
    ) -> None:
        self.name = name
        self.assets: Optional[FrozenSet[str]] = frozenset(assets) if assets is not None else None
        self._participants: List[Transactional] = []
        self._reconcilers: List[Reconciling] = []
        seen: set[int] = set()
        for participant in participants:
            if participant is None or id(participant) in seen:
                continue
            seen.add(id(participant))
            if self.assets is not None and isinstance(participant, AssetScoped):
                self._participants.append(participant.scope(self.assets))
            elif isinstance(participant, Transactional):
                self._participants.append(participant)
            elif isinstance(participant, Reconciling):
                self._reconcilers.append(participant)
            else:
                logger.debug(
                    "%s: %r cannot be rolled back and is excluded from the snapshot",
                    name,
                    participant,
                )
        self._snapshots: List[Tuple[Transactional, Any]] = []
        self._checkpoints: List[Tuple[Reconciling, Any]] = []

    def __enter__(self) -> "UnitOfWork":
        self._snapshots = [(p, p.snapshot()) for p in self._participants]
        self._checkpoints = [(r, r.checkpoint()) for r in self._reconcilers]
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
            logger.debug("%s rolled back after %s", self.name, exc_type.__name__)
        self._snapshots = []
        self._checkpoints = []
        return False

    def rollback(self) -> None:
        for participant, state in reversed(self._snapshots):
            participant.restore(state)
        for reconciler, checkpoint in self._checkpoints:
            reconciler.reconcile(checkpoint)
