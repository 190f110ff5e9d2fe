"""Agent configuration and live state bookkeeping."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from taskmesh.core.errors import DuplicateIdError, NotFoundError, ValidationError
from taskmesh.core.models import (
    DEFAULT_AGENT_TIMEOUT_MS,
    AgentConfig,
    AgentState,
    AgentStatus,
    Priority,
    generate_id,
)

_CAPABILITY_SPECIALIZATIONS = {
    "coding": "software_development",
    "research": "information_gathering",
    "analysis": "data_analysis",
}

_ROLE_SPECIALIZATIONS = {
    "test": "quality_assurance",
    "doc": "technical_writing",
}


def derive_specializations(config: AgentConfig) -> List[str]:
    """Map capabilities and role keywords onto specialization categories."""
    specializations = [
        specialization
        for capability, specialization in _CAPABILITY_SPECIALIZATIONS.items()
        if capability in config.capabilities
    ]
    role = config.role.lower()
    specializations.extend(
        specialization
        for keyword, specialization in _ROLE_SPECIALIZATIONS.items()
        if keyword in role
    )
    return specializations


def validate_agent_config(config: AgentConfig) -> None:
    if not config.id or not config.name or not config.role:
        raise ValidationError("Agent must have id, name, and role")
    if not config.capabilities:
        raise ValidationError("Agent must have at least one capability")
    if not config.system_prompt:
        raise ValidationError("Agent must have a system prompt")


def sub_agent_prompt(parent: AgentConfig, role: Optional[str]) -> str:
    return f"""You are a specialized sub-agent working under {parent.name} ({parent.role}).

Your specific role: {role or 'Specialized Assistant'}

Parent Agent Context:
- Role: {parent.role}
- Capabilities: {', '.join(parent.capabilities)}

Your Responsibilities:
- Execute specific subtasks assigned by your parent agent
- Report progress and results back to the parent agent
- Collaborate with sibling agents when necessary
- Maintain focus on your specialized domain
- Escalate complex issues to the parent agent

Communication Protocol:
- Always acknowledge task assignments
- Provide regular status updates
- Report completion with detailed results
- Flag any blockers or dependencies immediately
"""


def _inherit(overrides: Dict[str, Any], key: str, fallback: Any) -> Any:
    value = overrides.get(key)
    return fallback if value is None else value


class AgentRegistry:
    """Owns every AgentConfig and its AgentState, keyed by agent id."""

    def __init__(self) -> None:
        self._configs: Dict[str, AgentConfig] = {}
        self._states: Dict[str, AgentState] = {}

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._configs

    def __len__(self) -> int:
        return len(self._configs)

    def add(self, config: AgentConfig) -> AgentState:
        if config.id in self._configs:
            raise DuplicateIdError(config.id)
        validate_agent_config(config)

        state = AgentState(
            agent_id=config.id,
            capabilities=list(config.capabilities),
            specializations=derive_specializations(config),
        )
        self._configs[config.id] = config
        self._states[config.id] = state
        return state

    def build_sub_agent_config(self, parent_id: str, **overrides: Any) -> AgentConfig:
        """Fill every field the caller left unset from the parent agent."""
        parent = self._configs.get(parent_id)
        if parent is None:
            raise NotFoundError("parent agent", parent_id)

        role = overrides.get("role")
        system_prompt = overrides.get("system_prompt") or sub_agent_prompt(parent, role)
        return AgentConfig(
            id=overrides.get("id") or generate_id(f"{parent_id}_sub"),
            name=overrides.get("name") or f"{parent.name} Sub-Agent",
            role=role or f"Sub-{parent.role}",
            capabilities=list(overrides.get("capabilities") or parent.capabilities),
            system_prompt=system_prompt,
            max_tokens=_inherit(overrides, "max_tokens", parent.max_tokens),
            temperature=_inherit(overrides, "temperature", parent.temperature),
            tools=list(overrides.get("tools") or parent.tools),
            model=overrides.get("model") or parent.model,
            parent_agent_id=parent_id,
            priority=Priority(overrides.get("priority") or Priority.MEDIUM),
            timeout_ms=_inherit(overrides, "timeout_ms", DEFAULT_AGENT_TIMEOUT_MS),
        )

    def remove(self, agent_id: str) -> Optional[AgentConfig]:
        self._states.pop(agent_id, None)
        return self._configs.pop(agent_id, None)

    def config(self, agent_id: str) -> AgentConfig:
        try:
            return self._configs[agent_id]
        except KeyError:
            raise NotFoundError("agent", agent_id) from None

    def state(self, agent_id: str) -> AgentState:
        try:
            return self._states[agent_id]
        except KeyError:
            raise NotFoundError("agent", agent_id) from None

    def get_config(self, agent_id: str) -> Optional[AgentConfig]:
        return self._configs.get(agent_id)

    def get_state(self, agent_id: str) -> Optional[AgentState]:
        return self._states.get(agent_id)

    def configs(self) -> List[AgentConfig]:
        return list(self._configs.values())

    def states(self) -> List[AgentState]:
        return list(self._states.values())

    def idle(self) -> Iterable[AgentState]:
        return (state for state in self._states.values() if state.status is AgentStatus.IDLE)
