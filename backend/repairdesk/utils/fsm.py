from __future__ import annotations
"""Finite state machine utility for enforcing allowed status transitions.

Used for the ticket workflow and the purchase lifecycle.
Usage:
    from repairdesk.utils.fsm import TransitionValidator
    PURCHASE_FSM = TransitionValidator({
        'PENDING': {'RECEIVED', 'CANCELLED'},
        'RECEIVED': set(),
        'CANCELLED': set(),
    })
    PURCHASE_FSM.assert_can_transition(current_status, target_status)

Rules layered on the graph:
  - a self transition is always legal (no-op);
  - ``escape_state`` (when given) is reachable from every state not listed in ``terminal``.

Raises InvalidTransitionError if invalid. Lookups are pure; no I/O.
"""
from typing import Dict, Iterable, Optional, Set, FrozenSet, Any
from repairdesk.errors import InvalidTransitionError


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status',
                 escape_state: Optional[str] = None, terminal: Iterable[str] = ()):
        self.graph = {k: frozenset(v) for k, v in graph.items()}
        self.field_name = field_name
        self.escape_state = escape_state
        self.terminal = frozenset(terminal)

    @property
    def states(self) -> FrozenSet[str]:
        return frozenset(self.graph)

    def legal_destinations(self, current: str) -> FrozenSet[str]:
        """States reachable in one move, excluding the implicit self transition."""
        allowed = set(self.graph.get(current, ()))
        if self.escape_state and current in self.graph and current not in self.terminal:
            allowed.add(self.escape_state)
        allowed.discard(current)
        return frozenset(allowed)

    def is_legal(self, current: str, target: str) -> bool:
        if current not in self.graph or target not in self.graph:
            return False
        if current == target:
            return True
        return target in self.legal_destinations(current)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal or not self.legal_destinations(state)

    def assert_can_transition(self, current: str, target: str, entity: Optional[str] = None, entity_id: Any = None):
        if not self.is_legal(current, target):
            raise InvalidTransitionError(
                current, target, self.legal_destinations(current),
                entity=entity, entity_id=entity_id, field_name=self.field_name,
            )
        return True

__all__ = ['TransitionValidator']
