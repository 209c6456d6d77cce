"""
harvester/control_plane/in_flight.py
────────────────────────────────────
InFlightSet: the only shared mutable state between dispatch and forecast.

Entries are keyed by action_id (identity), never by position, so insertion
from the dispatcher and removal from a sweep cannot shift each other.
Every read returns a copy; callers may add while iterating a previous read.

Expiry is pull-based: each InFlightAction carries expires_at, and sweep(now)
evicts everything at or past it. There is no manual cancellation path.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List

from harvester.shared.models import InFlightAction

logger = logging.getLogger(__name__)


class InFlightSet:
    def __init__(self) -> None:
        self._actions: Dict[str, InFlightAction] = {}

    def add(self, action: InFlightAction) -> None:
        self._actions[action.action_id] = action

    def sweep(self, now: float) -> List[InFlightAction]:
        """Evict every action whose expiry has passed. Returns the evicted ones."""
        expired = [a for a in list(self._actions.values()) if not a.is_active(now)]
        for action in expired:
            self._actions.pop(action.action_id, None)
        if expired:
            logger.debug("InFlightSet: evicted %d expired actions", len(expired))
        return expired

    def active(self, now: float) -> List[InFlightAction]:
        """Sweep, then return the survivors in dispatch order."""
        self.sweep(now)
        return list(self._actions.values())

    def for_target(self, target_id: str, now: float) -> List[InFlightAction]:
        return [a for a in self.active(now) if a.target_id == target_id]

    def __contains__(self, action: object) -> bool:
        return isinstance(action, InFlightAction) and action.action_id in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[InFlightAction]:
        return iter(list(self._actions.values()))
