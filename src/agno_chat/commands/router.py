from __future__ import annotations

from collections.abc import Awaitable, Callable


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_session: Callable[[str], Awaitable[None]],
        on_agent: Callable[[str], Awaitable[None]],
        on_message: Callable[[str], Awaitable[None]],
        on_run: Callable[[str], Awaitable[None]],
        on_export: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_session = on_session
        self._on_agent = on_agent
        self._on_message = on_message
        self._on_run = on_run
        self._on_export = on_export
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command = trimmed.split(maxsplit=1)[0]
        if command == "/help":
            await self._on_help()
            return True
        if command == "/session":
            await self._on_session(trimmed)
            return True
        if command == "/agent":
            await self._on_agent(trimmed)
            return True
        if command in ("/edit", "/delete", "/feedback", "/messages", "/clear"):
            await self._on_message(trimmed)
            return True
        if command in ("/cancel", "/trace"):
            await self._on_run(trimmed)
            return True
        if command == "/export":
            await self._on_export(trimmed)
            return True

        self._on_unknown(trimmed)
        return True
