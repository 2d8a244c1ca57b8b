from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    api_key: str | None
    base_url_override: str | None


@dataclass
class AppConfig:
    base_url: str
    run_path: str
    agents_path: str
    default_agent_id: str
    request_timeout_seconds: float
    forward_history: bool
    fetch_remote_agents: bool
    storage_backend: str
    storage_path: str
    default_session_title: str
    user_name: str
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    backend = str(config.get("StorageBackend", "sqlite")).strip().lower()
    default_path = ".agno_chat/sessions.json" if backend == "json" else ".agno_chat/sessions.db"
    return AppConfig(
        base_url=str(config.get("BaseUrl", "http://localhost:7777")),
        run_path=str(config.get("RunPath", "/agents/create-agent-run")),
        agents_path=str(config.get("AgentsPath", "/agents/list-all-agents")),
        default_agent_id=str(config.get("DefaultAgentId", "general")),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 120)),
        forward_history=_to_bool(config.get("ForwardHistory", True), default=True),
        fetch_remote_agents=_to_bool(config.get("FetchRemoteAgents", True), default=True),
        storage_backend=backend,
        storage_path=str(config.get("StoragePath", default_path)),
        default_session_title=str(config.get("DefaultSessionTitle", "New Chat")),
        user_name=str(config.get("UserName", "User")),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        api_key=os.environ.get("AGNO_API_KEY") or None,
        base_url_override=os.environ.get("AGNO_BASE_URL") or None,
    )
