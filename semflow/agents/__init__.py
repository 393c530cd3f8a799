"""Agent loops."""

from semflow.agents.base import Agent, AgentServices, BaseAgent
from semflow.agents.factory import create_agent, parse_agent_config
from semflow.agents.mkrl import MKRLAgent
from semflow.agents.parsing import parse_agent_output, parse_numbered_list
from semflow.agents.plan_execute import PlanAndExecuteAgent

__all__ = [
    "Agent",
    "AgentServices",
    "BaseAgent",
    "MKRLAgent",
    "PlanAndExecuteAgent",
    "create_agent",
    "parse_agent_config",
    "parse_agent_output",
    "parse_numbered_list",
]
