import asyncio
import functools
import inspect
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar, Union

import structlog

from .errors import LoadError
from .interfaces import DocumentEngine

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class EngineHandle:
    """The loaded rendering engine plus the worker that runs its calls.

    One handle is shared by every conversion for the lifetime of its loader.
    """

    engine: DocumentEngine
    executor: ThreadPoolExecutor | None = None

    @property
    def name(self) -> str:
        return getattr(self.engine, "name", type(self.engine).__name__)

    @property
    def version(self) -> str | None:
        return getattr(self.engine, "version", None)

    async def call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking engine call on the engine's worker and await it."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(fn, *args))


EngineInitializer = Callable[[], Union[EngineHandle, Awaitable[EngineHandle]]]


class EngineLoader:
    """Lazily acquires the rendering engine and caches it.

    Concurrent ``acquire()`` calls made while initialization is pending share
    one task. A failed initialization is not cached: the next call starts over.
    """

    def __init__(self, initializer: EngineInitializer) -> None:
        self._initializer = initializer
        self._handle: EngineHandle | None = None
        self._pending: asyncio.Task[EngineHandle] | None = None
        self._initializations = 0

    @property
    def loaded(self) -> bool:
        return self._handle is not None

    @property
    def initializations(self) -> int:
        return self._initializations

    async def acquire(self) -> EngineHandle:
        if self._handle is not None:
            return self._handle
        if self._pending is None:
            self._pending = asyncio.create_task(self._initialize())
            self._pending.add_done_callback(_retrieve_exception)
        # shield: a cancelled waiter must not cancel the shared initialization
        return await asyncio.shield(self._pending)

    async def _initialize(self) -> EngineHandle:
        self._initializations += 1
        attempt = self._initializations
        log.info("engine.load.start", attempt=attempt)
        try:
            if _is_async(self._initializer):
                handle = await self._initializer()
            else:
                handle = await asyncio.to_thread(self._initializer)
                if inspect.isawaitable(handle):
                    handle = await handle
        except Exception as e:
            self._pending = None
            log.warning("engine.load.failed", attempt=attempt, error=str(e))
            raise LoadError(f"rendering engine unavailable: {e}") from e
        self._handle = handle
        self._pending = None
        log.info("engine.load.ready", attempt=attempt, engine=handle.name, version=handle.version)
        return handle

    def shutdown(self) -> None:
        """Release the engine worker. Only called at process shutdown."""
        handle, self._handle = self._handle, None
        if handle is not None and handle.executor is not None:
            handle.executor.shutdown(wait=False)


def _retrieve_exception(task: "asyncio.Task[EngineHandle]") -> None:
    # Marks the failure as seen when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


def _is_async(fn: Callable[..., object]) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))
