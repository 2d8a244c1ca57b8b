from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from agno_chat.agents import AgentDirectory
from agno_chat.app_config import AppConfig, RuntimeEnv
from agno_chat.controller import ChatController
from agno_chat.logging_config import setup_logging
from agno_chat.run_client import RunClient
from agno_chat.session_registry import SessionRegistry
from agno_chat.storage import SessionStorage, SqliteSessionStorage, create_storage


@dataclass
class AppRuntime:
    controller: ChatController
    run_client: RunClient
    agents: AgentDirectory
    storage: SessionStorage
    log_descriptions: list[str]

    async def close(self) -> None:
        for session in self.controller.registry.list_all():
            self.controller.cancel(session.id)
        await self.run_client.aclose()
        if isinstance(self.storage, SqliteSessionStorage):
            self.storage.close()


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    run_client = RunClient(
        env.base_url_override or app.base_url,
        api_key=env.api_key,
        run_path=app.run_path,
        agents_path=app.agents_path,
        timeout_seconds=app.request_timeout_seconds,
        forward_history=app.forward_history,
    )

    agents = AgentDirectory()
    if app.fetch_remote_agents:
        await agents.refresh(run_client)

    active_agent_id = app.default_agent_id
    if not agents.contains(active_agent_id) and agents.list():
        active_agent_id = agents.list()[0].id
        logger.info(f"Default agent {app.default_agent_id!r} unknown, using {active_agent_id!r}")

    storage_path = Path(app.storage_path)
    if app.storage_backend != "memory" and not storage_path.is_absolute():
        storage_path = Path.cwd() / storage_path
    storage = create_storage(app.storage_backend, str(storage_path))

    registry = SessionRegistry(
        storage,
        active_agent_id=active_agent_id,
        default_title=app.default_session_title,
    )
    controller = ChatController(registry=registry, run_client=run_client, agents=agents)

    return AppRuntime(
        controller=controller,
        run_client=run_client,
        agents=agents,
        storage=storage,
        log_descriptions=log_descriptions,
    )
