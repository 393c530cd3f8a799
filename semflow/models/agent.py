"""Agent data models: parsed intents and agent configuration."""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class Step(BaseModel):
    """A completed plan step and its result."""

    objective: str
    result: str

    def __str__(self) -> str:
        return f"{self.objective}\n{self.result}"


class AgentKind(str, Enum):
    """Closed set of agent loop kinds."""

    mkrl = "mkrl"
    plan_and_execute = "plan_and_execute"


class _AgentConfigBase(BaseModel):
    name: str
    description: str | None = None
    model: str = "gpt-3.5-turbo"
    provider: str = "openai"
    model_params: dict[str, Any] = Field(default_factory=dict)
    workspace_id: int | None = None
    username: str | None = None
    use_functions: bool = False


class MKRLAgentConfig(_AgentConfigBase):
    """ReAct-style agent: Thought / Action / Observation turns."""

    kind: Literal[AgentKind.mkrl] = AgentKind.mkrl
    max_iterations: int | None = None  # None -> settings default
    max_execution_time: float | None = None  # seconds
    prompt_set_skill: str = "react_plan"


class PlanAndExecuteAgentConfig(_AgentConfigBase):
    """Agent that drafts a numbered plan, then executes it step by step."""

    kind: Literal[AgentKind.plan_and_execute] = AgentKind.plan_and_execute
    prompt_set_skill: str = "plan"
    evaluation_model: str = "gpt-4"
    evaluation_provider: str = "openai"


AgentConfig = Annotated[
    MKRLAgentConfig | PlanAndExecuteAgentConfig,
    Field(discriminator="kind"),
]
