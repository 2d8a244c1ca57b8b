from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence
from typing import Any

import httpx
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agno_chat.errors import TransportError
from agno_chat.models import Agent, Attachment, LogEntry, Message, Role, new_id
from agno_chat.protocol import ContentDelta, Frame, FrameDecoder, RunCompletedFrame, TraceFrame

DEFAULT_RUN_PATH = "/agents/create-agent-run"
DEFAULT_AGENTS_PATH = "/agents/list-all-agents"

ContentCallback = Callable[[str], None]
CompleteCallback = Callable[[str, "dict[str, Any] | None"], None]
ErrorCallback = Callable[[Exception], None]
TraceCallback = Callable[[LogEntry], None]


def normalize_base_url(url: str) -> str:
    """Infer a missing scheme, drop trailing slashes and make sure the ``/v1`` root is present."""
    if not url:
        return ""
    normalized = url.strip().rstrip("/")
    if not re.match(r"^https?://", normalized):
        if "localhost" in normalized or "127.0.0.1" in normalized:
            normalized = f"http://{normalized}"
        else:
            normalized = f"https://{normalized}"
    if not normalized.endswith("/v1"):
        normalized = f"{normalized}/v1"
    return normalized


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt}/3)...")


class RunHandle:
    """One in-flight run. Once cancelled, none of its callbacks fire again."""

    def __init__(
        self,
        *,
        on_content: ContentCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        on_trace: TraceCallback | None = None,
    ):
        self.id = new_id()
        self.remote_run_id: str | None = None
        self._on_content = on_content
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_trace = on_trace
        self._cancelled = False
        self._finished = False
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info(f"Run {self.id} cancelled")

    def done(self) -> bool:
        return self._task is None or self._task.done()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task

    def _live(self) -> bool:
        return not self._cancelled and not self._finished

    def emit_content(self, text: str) -> None:
        if self._live():
            self._on_content(text)

    def emit_trace(self, entry: LogEntry) -> None:
        if self._live() and self._on_trace is not None:
            self._on_trace(entry)

    def emit_complete(self, text: str, metrics: dict[str, Any] | None) -> None:
        if self._live():
            self._finished = True
            self._on_complete(text, metrics)

    def emit_error(self, error: Exception) -> None:
        if self._live():
            self._finished = True
            self._on_error(error)


class RunClient:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        run_path: str = DEFAULT_RUN_PATH,
        agents_path: str = DEFAULT_AGENTS_PATH,
        timeout_seconds: float = 120.0,
        forward_history: bool = True,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._base_url = normalize_base_url(base_url)
        self._api_key = (api_key or "").strip() or None
        self._run_path = run_path
        self._agents_path = agents_path
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0))
        self._forward_history = forward_history
        self._client = http_client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = http_client is None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream, application/x-ndjson, application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def build_payload(
        self,
        agent: Agent,
        prior_messages: Sequence[Message],
        new_text: str,
        attachments: Sequence[Attachment] = (),
        *,
        session_id: str | None = None,
        documents: Sequence[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"agent_id": agent.id, "input": new_text, "stream": True}
        if session_id:
            payload["session_id"] = session_id
        if self._forward_history:
            payload["messages"] = [
                {"role": m.role.value, "content": m.text}
                for m in prior_messages
                if m.role != Role.SYSTEM and not m.is_streaming
            ]
        if attachments:
            payload["attachments"] = [
                {"mime_type": a.mime_type, "data": a.data, "name": a.name} for a in attachments
            ]
        if documents:
            payload["knowledge"] = list(documents)
        return payload

    def start(
        self,
        agent: Agent,
        prior_messages: Sequence[Message],
        new_text: str,
        attachments: Sequence[Attachment] = (),
        *,
        on_content: ContentCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        on_trace: TraceCallback | None = None,
        session_id: str | None = None,
        documents: Sequence[dict[str, Any]] | None = None,
    ) -> RunHandle:
        """Begin one streamed run on the running event loop and return its handle."""
        handle = RunHandle(
            on_content=on_content,
            on_complete=on_complete,
            on_error=on_error,
            on_trace=on_trace,
        )
        payload = self.build_payload(
            agent,
            prior_messages,
            new_text,
            attachments,
            session_id=session_id,
            documents=documents,
        )
        task = asyncio.get_running_loop().create_task(self._run(handle, payload))
        task.add_done_callback(_log_task_failure)
        handle._attach(task)
        return handle

    async def _run(self, handle: RunHandle, payload: dict[str, Any]) -> None:
        url = f"{self._base_url}{self._run_path}"
        decoder = FrameDecoder()
        accumulated = ""
        log = logger.bind(session=payload.get("session_id") or "-", run=handle.id)
        log.info(f"Starting run {handle.id} for agent {payload['agent_id']}")
        try:
            async with self._client.stream("POST", url, json=payload, headers=self._headers()) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace").strip()
                    raise TransportError(
                        f"Run failed: {response.status_code} {body}".strip(),
                        status_code=response.status_code,
                        body=body,
                    )
                async for chunk in response.aiter_bytes():
                    for frame in decoder.feed(chunk):
                        accumulated, completed = self._apply(handle, frame, accumulated)
                        if completed:
                            return
                for frame in decoder.flush():
                    accumulated, completed = self._apply(handle, frame, accumulated)
                    if completed:
                        return
        except TransportError as ex:
            log.error(f"Run {handle.id} failed: {ex}")
            handle.emit_error(ex)
            return
        except httpx.HTTPError as ex:
            log.error(f"Run {handle.id} transport failure: {type(ex).__name__}: {ex}")
            handle.emit_error(TransportError(str(ex) or type(ex).__name__))
            return
        except Exception as ex:
            log.opt(exception=ex).error(f"Run {handle.id} crashed: {type(ex).__name__}: {ex}")
            handle.emit_error(TransportError(str(ex) or type(ex).__name__))
            return

        log.info(f"Run {handle.id} ended without RunCompleted; completing with {len(accumulated)} chars")
        handle.emit_complete(accumulated, None)

    def _apply(self, handle: RunHandle, frame: Frame, accumulated: str) -> tuple[str, bool]:
        if isinstance(frame, ContentDelta):
            if frame.content:
                accumulated += frame.content
                handle.emit_content(accumulated)
            return accumulated, False
        if isinstance(frame, RunCompletedFrame):
            if frame.content:
                accumulated = frame.content
            logger.bind(run=handle.id).info(f"Run {handle.id} completed ({len(accumulated)} chars)")
            handle.emit_complete(accumulated, frame.metrics)
            return accumulated, True
        if isinstance(frame, TraceFrame):
            run_id = frame.payload.get("run_id")
            if run_id and handle.remote_run_id is None:
                handle.remote_run_id = str(run_id)
            handle.emit_trace(frame.to_log_entry())
        return accumulated, False

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        before_sleep=_on_retry,
        reraise=True,
    )
    async def list_agents(self) -> list[Agent]:
        url = f"{self._base_url}{self._agents_path}"
        logger.debug(f"Fetching agents from {url}")
        response = await self._client.get(url, headers=self._headers())
        if not response.is_success:
            raise TransportError(
                f"Agent listing failed: {response.status_code} {response.text}".strip(),
                status_code=response.status_code,
                body=response.text,
            )
        data = response.json()
        items = data if isinstance(data, list) else data.get("agents", []) if isinstance(data, dict) else []
        return [_agent_from_payload(item, index) for index, item in enumerate(items) if isinstance(item, dict)]


def _agent_from_payload(item: dict[str, Any], index: int) -> Agent:
    model = item.get("model")
    # AgentOS reports the model either as a plain id or as {"name", "model", "provider"}.
    if isinstance(model, dict):
        model = model.get("model") or model.get("id") or model.get("name")
    return Agent(
        id=str(item.get("agent_id") or item.get("id") or f"agent-{index + 1}"),
        name=item.get("name") or f"Agno Agent {index + 1}",
        model=str(model or "unknown"),
        instructions=str(item.get("instructions") or ""),
        description=item.get("description") or "Remote Agno Agent",
    )


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error(f"Run task crashed: {exc}")
