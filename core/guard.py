import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Optional

log = logging.getLogger(__name__)


class InitState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class InitGuard:
    """Runs an async initialiser at most once and hands every caller the same value.

    Callers arriving while the first initialisation is in flight wait on a single
    shared future instead of starting a second one. A failed attempt is delivered
    to all of its waiters and leaves the guard uninitialised so a later call can
    try again.
    """

    def __init__(self, factory: Callable[[], Awaitable[Any]], *, name: str = "resource") -> None:
        self._factory = factory
        self.name = name
        self.state = InitState.UNINITIALIZED
        self._value: Any = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def ready(self) -> bool:
        return self.state is InitState.READY

    @property
    def value(self) -> Any:
        return self._value

    async def get(self) -> Any:
        if self.state is InitState.READY:
            return self._value
        if self.state is InitState.INITIALIZING and self._pending is not None:
            return await asyncio.shield(self._pending)

        self.state = InitState.INITIALIZING
        pending = asyncio.get_running_loop().create_future()
        self._pending = pending
        try:
            value = await self._factory()
        except asyncio.CancelledError:
            self.state = InitState.UNINITIALIZED
            self._pending = None
            pending.cancel()
            raise
        except Exception as exc:
            self.state = InitState.UNINITIALIZED
            self._pending = None
            pending.set_exception(exc)
            # mark retrieved so an unobserved failure is not reported twice
            pending.exception()
            log.debug("%s initialisation failed: %s", self.name, exc)
            raise
        self._value = value
        self.state = InitState.READY
        self._pending = None
        pending.set_result(value)
        return value

    def reset(self) -> Any:
        """Forget the initialised value and return it so the caller can dispose of it."""
        value = self._value
        self._value = None
        self.state = InitState.UNINITIALIZED
        return value
