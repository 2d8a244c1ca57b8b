import asyncio
import json
import unittest

import httpx

from agno_chat.agents import AgentDirectory
from agno_chat.controller import ChatController
from agno_chat.errors import TransportError
from agno_chat.models import Agent, Attachment, Message, Role, RunState
from agno_chat.run_client import RunClient, normalize_base_url
from agno_chat.session_registry import SessionRegistry
from agno_chat.storage import InMemorySessionStorage

AGENT = Agent(id="general", name="Orchestrator", model="m")


class _ChunkStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes], hold: asyncio.Event | None = None):
        self._chunks = chunks
        self._hold = hold
        self.closed = False

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._hold is not None:
            await self._hold.wait()

    async def aclose(self) -> None:
        self.closed = True


def _line(payload: dict) -> bytes:
    return (json.dumps(payload) + "\n").encode("utf-8")


class _Recorder:
    def __init__(self) -> None:
        self.contents: list[str] = []
        self.completed: list[tuple[str, dict | None]] = []
        self.errors: list[Exception] = []
        self.traces: list = []
        self.done = asyncio.Event()

    def on_content(self, text: str) -> None:
        self.contents.append(text)

    def on_complete(self, text: str, metrics) -> None:
        self.completed.append((text, metrics))
        self.done.set()

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)
        self.done.set()

    def on_trace(self, entry) -> None:
        self.traces.append(entry)


class RunClientStreamTests(unittest.TestCase):
    def _run(self, handler, *, prior=(), text="Hello", **client_kwargs) -> tuple[_Recorder, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        recorder = _Recorder()

        async def scenario() -> None:
            http_client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
            client = RunClient("localhost:7777", http_client=http_client, **client_kwargs)
            handle = client.start(
                AGENT,
                prior,
                text,
                on_content=recorder.on_content,
                on_complete=recorder.on_complete,
                on_error=recorder.on_error,
                on_trace=recorder.on_trace,
                session_id="s1",
            )
            await handle.wait()
            await http_client.aclose()

        asyncio.run(scenario())
        return recorder, requests

    def test_cumulative_content_then_authoritative_completion(self) -> None:
        chunks = [
            _line({"event": "RunContent", "content": "Hi"}),
            b"data: " + _line({"event": "RunContent", "content": " there"}),
            _line({"event": "RunCompleted", "content": "Hi there!", "metrics": {"output_tokens": 3}}),
        ]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))

        self.assertEqual(["Hi", "Hi there"], recorder.contents)
        self.assertEqual([("Hi there!", {"output_tokens": 3})], recorder.completed)
        self.assertEqual([], recorder.errors)

    def test_completion_without_content_keeps_accumulated_text(self) -> None:
        chunks = [
            _line({"event": "RunContent", "content": "abc"}),
            _line({"event": "RunCompleted", "content": ""}),
        ]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))
        self.assertEqual([("abc", None)], recorder.completed)

    def test_frames_after_completion_are_not_read(self) -> None:
        chunks = [
            _line({"event": "RunCompleted", "content": "final"}),
            _line({"event": "RunContent", "content": "late"}),
        ]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))
        self.assertEqual([], recorder.contents)
        self.assertEqual([("final", None)], recorder.completed)

    def test_completion_stops_reading_an_open_connection(self) -> None:
        hold = asyncio.Event()
        chunks = [_line({"event": "RunCompleted", "content": "done"})]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks, hold)))
        self.assertEqual([("done", None)], recorder.completed)

    def test_eof_without_completion_completes_with_accumulated(self) -> None:
        chunks = [
            _line({"event": "RunContent", "content": "part"}),
            b'{"event": "RunContent", "content": "ial"}',
        ]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))
        self.assertEqual(["part", "partial"], recorder.contents)
        self.assertEqual([("partial", None)], recorder.completed)

    def test_frame_split_across_reads(self) -> None:
        whole = _line({"event": "RunContent", "content": "joined"})
        chunks = [whole[:-3], whole[-3:], b"data: [DONE]\n"]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))
        self.assertEqual(["joined"], recorder.contents)
        self.assertEqual([("joined", None)], recorder.completed)

    def test_malformed_line_does_not_abort_stream(self) -> None:
        chunks = [
            b"{not json\n",
            _line({"event": "RunContent", "content": "ok"}),
            _line({"event": "RunCompleted"}),
        ]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))
        self.assertEqual([("ok", None)], recorder.completed)

    def test_trace_events_are_forwarded(self) -> None:
        chunks = [
            _line({"event": "RunStarted", "run_id": "r-1", "agent_name": "Orchestrator"}),
            _line({"event": "ToolCallStarted", "tool": {"tool_name": "search"}}),
            _line({"event": "RunCompleted", "content": "x"}),
        ]
        recorder, _ = self._run(lambda request: httpx.Response(200, stream=_ChunkStream(chunks)))
        self.assertEqual(["step", "tool"], [t.kind for t in recorder.traces])
        self.assertEqual("ToolCallStarted: search", recorder.traces[1].title)
        self.assertEqual("Orchestrator", recorder.traces[0].agent_name)

    def test_error_status_reports_transport_error(self) -> None:
        recorder, _ = self._run(lambda request: httpx.Response(503, text="overloaded"))
        self.assertEqual([], recorder.completed)
        self.assertEqual(1, len(recorder.errors))
        error = recorder.errors[0]
        self.assertIsInstance(error, TransportError)
        self.assertEqual(503, error.status_code)
        self.assertIn("overloaded", str(error))

    def test_network_failure_reports_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        recorder, _ = self._run(handler)
        self.assertEqual([], recorder.completed)
        self.assertIsInstance(recorder.errors[0], TransportError)
        self.assertIn("connection refused", str(recorder.errors[0]))

    def test_request_shape(self) -> None:
        prior = (
            Message(id="u0", role=Role.USER, text="earlier", timestamp=1),
            Message(id="a0", role=Role.ASSISTANT, text="reply", timestamp=2),
        )
        chunks = [_line({"event": "RunCompleted", "content": "x"})]
        _, requests = self._run(
            lambda request: httpx.Response(200, stream=_ChunkStream(chunks)),
            prior=prior,
            api_key="secret",
        )

        request = requests[0]
        self.assertEqual("POST", request.method)
        self.assertEqual("http://localhost:7777/v1/agents/create-agent-run", str(request.url))
        self.assertEqual("Bearer secret", request.headers["Authorization"])
        body = json.loads(request.content)
        self.assertEqual("general", body["agent_id"])
        self.assertEqual("s1", body["session_id"])
        self.assertEqual("Hello", body["input"])
        self.assertIs(True, body["stream"])
        self.assertEqual(
            [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}],
            body["messages"],
        )

    def test_unexpected_exception_is_reported_as_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise ValueError("chunk decoder exploded")

        recorder, _ = self._run(handler)

        self.assertEqual([], recorder.completed)
        self.assertEqual(1, len(recorder.errors))
        self.assertIsInstance(recorder.errors[0], TransportError)
        self.assertIn("chunk decoder exploded", str(recorder.errors[0]))

    def test_history_forwarding_can_be_disabled(self) -> None:
        chunks = [_line({"event": "RunCompleted", "content": "x"})]
        _, requests = self._run(
            lambda request: httpx.Response(200, stream=_ChunkStream(chunks)),
            forward_history=False,
        )
        body = json.loads(requests[0].content)
        self.assertNotIn("messages", body)
        self.assertNotIn("Authorization", requests[0].headers)


class RunClientCancelTests(unittest.TestCase):
    def test_cancel_makes_callbacks_inert(self) -> None:
        recorder = _Recorder()
        hold = asyncio.Event()
        chunks = [_line({"event": "RunContent", "content": "first"})]

        async def scenario() -> None:
            http_client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200, stream=_ChunkStream(chunks, hold)))
            )
            client = RunClient("http://agents.local", http_client=http_client)
            handle = client.start(
                AGENT,
                (),
                "Hello",
                on_content=recorder.on_content,
                on_complete=recorder.on_complete,
                on_error=recorder.on_error,
            )
            for _ in range(50):
                if recorder.contents:
                    break
                await asyncio.sleep(0.01)
            handle.cancel()
            handle.cancel()
            await handle.wait()
            self.assertTrue(handle.done())
            await http_client.aclose()

        asyncio.run(scenario())

        self.assertEqual(["first"], recorder.contents)
        self.assertEqual([], recorder.completed)
        self.assertEqual([], recorder.errors)


class RunClientAgentsTests(unittest.TestCase):
    def test_list_agents_maps_payload(self) -> None:
        payload = {
            "agents": [
                {"agent_id": "a1", "name": "Researcher", "model": {"model": "gpt-4o", "provider": "openai"}},
                {"agent_id": "a2", "instructions": "be brief"},
            ]
        }

        async def scenario():
            http_client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
            )
            client = RunClient("https://agents.example.com/v1/", http_client=http_client)
            agents = await client.list_agents()
            await http_client.aclose()
            return agents

        agents = asyncio.run(scenario())

        self.assertEqual(["a1", "a2"], [a.id for a in agents])
        self.assertEqual("gpt-4o", agents[0].model)
        self.assertEqual("Agno Agent 2", agents[1].name)
        self.assertEqual("be brief", agents[1].instructions)

    def test_normalize_base_url(self) -> None:
        self.assertEqual("http://localhost:7777/v1", normalize_base_url("localhost:7777/"))
        self.assertEqual("http://127.0.0.1:8000/v1", normalize_base_url("127.0.0.1:8000"))
        self.assertEqual("https://agents.example.com/v1", normalize_base_url("agents.example.com"))
        self.assertEqual("https://agents.example.com/v1", normalize_base_url("https://agents.example.com/v1//"))
        self.assertEqual("", normalize_base_url(""))

    def test_payload_passes_attachments_and_documents_through(self) -> None:
        client = RunClient("localhost", http_client=httpx.AsyncClient())
        payload = client.build_payload(
            AGENT,
            (),
            "hi",
            (Attachment(mime_type="image/png", data="AAA", name="x.png"),),
            documents=[{"id": "doc-1", "name": "guide.md"}],
        )
        self.assertNotIn("session_id", payload)
        self.assertEqual([{"mime_type": "image/png", "data": "AAA", "name": "x.png"}], payload["attachments"])
        self.assertEqual([{"id": "doc-1", "name": "guide.md"}], payload["knowledge"])


class RunClientControllerFailureTests(unittest.TestCase):
    def test_malformed_base_url_returns_session_to_idle(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise ValueError("unreachable")

        async def scenario():
            http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            client = RunClient("http://[::1", http_client=http_client)
            registry = SessionRegistry(InMemorySessionStorage(), active_agent_id="general")
            controller = ChatController(registry=registry, run_client=client, agents=AgentDirectory())
            handle = controller.send("hi")
            await handle.wait()
            await http_client.aclose()
            return controller

        controller = asyncio.run(scenario())

        self.assertEqual(RunState.IDLE, controller.state())
        reply = controller.messages()[-1]
        self.assertFalse(reply.is_streaming)
        self.assertTrue(reply.text.startswith("Error: "))
        self.assertIsNotNone(controller.last_error())
        controller.ensure_idle()


if __name__ == "__main__":
    unittest.main()
