"""Directed adjacency of agents allowed to coordinate with each other."""
from __future__ import annotations

from itertools import combinations
from typing import Callable, Dict, List, Sequence

from taskmesh.core.errors import NotFoundError
from taskmesh.core.models import generate_id


class CollaborationGraph:
    """Agent id -> ordered list of collaborator ids.

    Only edges are stored; collaboration ids are handed back to callers but
    carry no metadata of their own.
    """

    def __init__(self, agent_exists: Callable[[str], bool]) -> None:
        self._agent_exists = agent_exists
        self._edges: Dict[str, List[str]] = {}

    def add_link(self, from_agent_id: str, to_agent_id: str) -> None:
        collaborators = self._edges.setdefault(from_agent_id, [])
        if to_agent_id not in collaborators:
            collaborators.append(to_agent_id)

    def create(self, agent_ids: Sequence[str]) -> str:
        """Link every pair in ``agent_ids`` in both directions."""
        for agent_id in agent_ids:
            if not self._agent_exists(agent_id):
                raise NotFoundError("agent", agent_id)

        for first, second in combinations(dict.fromkeys(agent_ids), 2):
            self.add_link(first, second)
            self.add_link(second, first)
        return generate_id("collab")

    def remove_agent(self, agent_id: str) -> None:
        self._edges.pop(agent_id, None)
        for collaborators in self._edges.values():
            if agent_id in collaborators:
                collaborators.remove(agent_id)

    def collaborators(self, agent_id: str) -> List[str]:
        return list(self._edges.get(agent_id, ()))

    def snapshot(self) -> Dict[str, List[str]]:
        return {agent_id: list(collaborators) for agent_id, collaborators in self._edges.items()}

    def __len__(self) -> int:
        return len(self._edges)
