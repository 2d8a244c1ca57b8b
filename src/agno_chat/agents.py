from __future__ import annotations

import httpx
from loguru import logger

from agno_chat.errors import TransportError
from agno_chat.models import Agent
from agno_chat.run_client import RunClient

DEFAULT_AGENTS: tuple[Agent, ...] = (
    Agent(
        id="general",
        name="Orchestrator",
        model="gemini-2.5-flash",
        instructions="You are the Orchestrator, a helpful and precise AI assistant. You are concise, accurate, and helpful.",
        description="General purpose assistant",
    ),
    Agent(
        id="developer",
        name="Dev Architect",
        model="gemini-2.5-flash",
        instructions=(
            "You are a Senior Software Architect. You specialize in clean code, design patterns, "
            "and scalable architecture."
        ),
        description="Code and systems engineering",
    ),
    Agent(
        id="analyst",
        name="Data Analyst",
        model="gemini-2.5-flash",
        instructions=(
            "You are a Data Analyst. You excel at breaking down complex problems, analyzing data "
            "patterns, and providing logical reasoning."
        ),
        description="Reasoning and data insights",
    ),
)


class AgentDirectory:
    """Read-only agent lookup, refreshed from the remote service when reachable."""

    def __init__(self, agents: tuple[Agent, ...] | list[Agent] = DEFAULT_AGENTS):
        self._agents: dict[str, Agent] = {a.id: a for a in agents}

    def list(self) -> list[Agent]:
        return list(self._agents.values())

    def get(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            # The remote service may still know the id.
            return Agent(id=agent_id, name=agent_id)
        return agent

    def contains(self, agent_id: str) -> bool:
        return agent_id in self._agents

    async def refresh(self, client: RunClient) -> list[Agent]:
        try:
            agents = await client.list_agents()
        except (TransportError, httpx.HTTPError, ValueError) as ex:
            logger.warning(f"Could not fetch remote agents, keeping {len(self._agents)} known agents: {ex}")
            return self.list()
        if agents:
            self._agents = {a.id: a for a in agents}
            logger.info(f"Loaded {len(agents)} remote agents")
        return self.list()
