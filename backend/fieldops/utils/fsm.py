from __future__ import annotations
"""Finite state machine utilities for ticket status transitions.

A TransitionValidator holds one adjacency graph. A CapabilityTable maps an actor kind
to its own graph so "who may move a ticket from X to Y" is a single lookup evaluated
before any mutation:

    TICKET_CAPABILITIES = CapabilityTable({
        'technician': {'PENDING': {'ACCEPTED'}, 'ACCEPTED': set()},
        'admin': {'PENDING': {'ACCEPTED', 'PENDING'}},
    })
    TICKET_CAPABILITIES.assert_allowed('technician', current, target)

Raises StateError if the transition is not in the table.
"""
from typing import Dict, Iterable, Set
from fieldops.errors import StateError


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise StateError(f"Invalid {self.field_name} transition {current} -> {target}")
        return True


class CapabilityTable:
    def __init__(self, graphs: Dict[str, Dict[str, Set[str]]]):
        self.validators = {kind: TransitionValidator(graph) for kind, graph in graphs.items()}

    def is_allowed(self, actor_kind: str, current: str, target: str) -> bool:
        validator = self.validators.get(actor_kind)
        return bool(validator and validator.can_transition(current, target))

    def assert_allowed(self, actor_kind: str, current: str, target: str):
        validator = self.validators.get(actor_kind)
        if validator is None:
            raise StateError(f"{actor_kind} may not change ticket status")
        validator.assert_can_transition(current, target)
        return True


def forward_chain_graph(chain: Iterable[str], side_exit: str) -> Dict[str, Set[str]]:
    """Adjacency for a linear chain where every non-final step may also leave via side_exit."""
    steps = list(chain)
    graph: Dict[str, Set[str]] = {}
    for current, nxt in zip(steps, steps[1:]):
        graph[current] = {nxt, side_exit}
    graph[steps[-1]] = set()
    graph[side_exit] = set()
    return graph


def override_graph(statuses: Iterable[str], frozen: Iterable[str] = ()) -> Dict[str, Set[str]]:
    """Every status reachable from every status except the frozen ones."""
    all_statuses = set(statuses)
    blocked = set(frozen)
    return {s: (set() if s in blocked else set(all_statuses)) for s in all_statuses}

__all__ = ['TransitionValidator', 'CapabilityTable', 'forward_chain_graph', 'override_graph']
