"""Agent registry: completion-backed agents register under a name, the statement processor builds them by name.

Re-registering a name swaps the implementation used for that pipeline role.
"""

from typing import ClassVar

from app.agents.base import BaseAgent
from app.core.settings import Settings


class AgentRegistry:
    """Name -> agent class lookup for the extraction, categorization and validation roles."""

    _agents: ClassVar[dict[str, type[BaseAgent]]] = {}

    @classmethod
    def register(cls, name: str, agent_cls: type[BaseAgent]) -> None:
        cls._agents[name] = agent_cls

    @classmethod
    def names(cls) -> list[str]:
        return sorted(cls._agents)

    @classmethod
    def build(cls, name: str, llm_client: object, settings: Settings) -> BaseAgent:
        """Instantiate the agent registered under ``name``."""
        try:
            agent_cls = cls._agents[name]
        except KeyError as exc:
            msg = f"No agent registered as {name!r}; known agents: {', '.join(cls.names())}"
            raise KeyError(msg) from exc
        return agent_cls(llm_client, settings)
