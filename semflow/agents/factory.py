"""Build an agent from a tagged configuration."""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter

from semflow.agents.base import Agent, AgentServices
from semflow.agents.mkrl import MKRLAgent
from semflow.agents.plan_execute import PlanAndExecuteAgent
from semflow.models.agent import AgentConfig, AgentKind, MKRLAgentConfig, PlanAndExecuteAgentConfig

_config_adapter: TypeAdapter = TypeAdapter(AgentConfig)


def parse_agent_config(config: dict[str, Any]) -> MKRLAgentConfig | PlanAndExecuteAgentConfig:
    """Validate a raw config dict against the ``kind``-tagged union."""
    return _config_adapter.validate_python(config)


def create_agent(
    config: MKRLAgentConfig | PlanAndExecuteAgentConfig | dict[str, Any],
    services: AgentServices,
    **extras: Any,
) -> Agent:
    """Instantiate the agent for ``config.kind``.

    ``extras`` carries what a config cannot: callbacks, semantic functions,
    compositions and sub-agents.
    """
    if isinstance(config, dict):
        config = parse_agent_config(config)
    kwargs = {**config.model_dump(exclude={"kind"}), **extras}
    if config.kind == AgentKind.mkrl:
        return MKRLAgent(services=services, **kwargs)
    if config.kind == AgentKind.plan_and_execute:
        return PlanAndExecuteAgent(services=services, **kwargs)
    raise ValueError(f"unknown agent kind: {config.kind}")
