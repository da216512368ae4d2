import asyncio
import logging
from typing import Callable

log = logging.getLogger(__name__)

EXIT_COMMAND = "exit"


class ConsoleTransport:
    """Interactive terminal loop; one turn is finished before the next prompt."""

    def __init__(
        self,
        agent,
        user_id: str,
        *,
        read_line: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ) -> None:
        self.agent = agent
        self.user_id = user_id
        self._read_line = read_line
        self._write = write

    async def _prompt(self) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_line, "You: ")

    async def run(self) -> None:
        self._write("💬 $SCRT Trading AI - Start chatting! (Type 'exit' to quit)")
        while True:
            try:
                text = await self._prompt()
            except EOFError:
                self._write("Goodbye!")
                return
            if text.strip().lower() == EXIT_COMMAND:
                self._write("Goodbye!")
                return
            if not text.strip():
                continue
            try:
                reply = await self.agent.handle_turn(self.user_id, text)
            except Exception as exc:
                log.exception("Error during chat: %s", exc)
                reply = "Sorry, I encountered an internal error."
            self._write(f"AI: {reply}")
