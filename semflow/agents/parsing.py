"""Parsers for free-text agent output."""

from __future__ import annotations

import re

from langchain_core.agents import AgentAction, AgentFinish
from langchain_core.exceptions import OutputParserException

FINAL_ANSWER_ACTION = "Final Answer:"

ACTION_RE = re.compile(
    r"Action\s*\d*\s*:[\s]*(.*?)[\s]*Action\s*\d*\s*Input\s*\d*\s*:[\s]*(.*)",
    re.DOTALL,
)
_ACTION_ONLY_RE = re.compile(r"Action\s*\d*\s*:[\s]*(.*?)", re.DOTALL)
_ACTION_INPUT_RE = re.compile(r"[\s]*Action\s*\d*\s*Input\s*\d*\s*:[\s]*(.*)", re.DOTALL)

_NUMBERED_ITEM_RE = re.compile(r"^\s*\d+\s*[.)]\s*(.+?)\s*$")


def get_parse_error(text: str) -> tuple[str, bool]:
    """Diagnose unparseable output. Returns ``(observation, retriable)``."""
    if not _ACTION_ONLY_RE.search(text):
        return 'Invalid Format: Missing "Action:" after "Thought:"', True
    if not _ACTION_INPUT_RE.search(text):
        return 'Invalid Format: Missing "Action Input:" after "Thought:"', True
    return f'Could not parse LLM output: "{text}"', False


def parse_agent_output(text: str) -> AgentAction | AgentFinish:
    """Parse a ReAct turn into an action or a final answer.

    Raises:
        OutputParserException: if the output holds both an action and a final
            answer (not retriable), or neither (retriable when the format
            error can be described to the model).
    """
    has_final_answer = FINAL_ANSWER_ACTION in text
    match = ACTION_RE.search(text)
    if match:
        action = match.group(1).strip()
        if has_final_answer:
            raise OutputParserException(
                f'Could not parse LLM output: "{text}"',
                observation=(
                    "Parsing LLM output produced both a final answer and a "
                    f"parseable action: {action}"
                ),
                llm_output=text,
                send_to_llm=False,
            )
        tool_input = match.group(2).strip()
        # SQL keeps its quotes
        if not tool_input.startswith("SELECT "):
            tool_input = tool_input.strip('"')
        return AgentAction(tool=action, tool_input=tool_input, log=text)

    if has_final_answer:
        output = text.split(FINAL_ANSWER_ACTION, 1)[1].strip()
        return AgentFinish(return_values={"output": output}, log=text)

    observation, retriable = get_parse_error(text)
    raise OutputParserException(
        f'Could not parse LLM output: "{text}"',
        observation=observation,
        llm_output=text,
        send_to_llm=retriable,
    )


def parse_numbered_list(text: str) -> list[str]:
    """Return the items of a ``1. ...`` / ``2) ...`` list, in order."""
    steps = []
    for line in text.splitlines():
        match = _NUMBERED_ITEM_RE.match(line)
        if match:
            steps.append(match.group(1))
    return steps
