"""
Drive generation requests through parameter resolution and the execution queue.

A request moves ``QUEUED -> RUNNING -> SUCCEEDED | FAILED``.
Resolution failures never reach the queue. Backend calls are made exactly
once; any failure is final for that request.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, Union

from core.errors import ClientError, log_error
from core.execution_queue import ExecutionQueue, QueuedTask
from core.models import ControlnetUnit, GenerationParameters, ResourceClass, UserPreferences
from core.resolver import DisplayParams, ImageRequest, ParameterResolver, ResolvedRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_TEXT = "Request cancelled."


class RequestState(enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageResult:
    images: tuple[str, ...]
    seed: int
    display: DisplayParams
    warnings: tuple[str, ...]
    controlnet_images: tuple[tuple[ControlnetUnit, str | None], ...] = ()


@dataclass(frozen=True)
class Succeeded:
    result: ImageResult


@dataclass(frozen=True)
class Failed:
    error: Exception
    display: DisplayParams
    warnings: tuple[str, ...] = ()


Outcome = Union[Succeeded, Failed]


class GenerationObserver:
    """Lifecycle hooks of one request. Override what you need."""

    async def on_queue_position_changed(self, position: int, display: DisplayParams) -> None:
        pass

    async def on_run_started(self, display: DisplayParams) -> None:
        pass

    async def on_succeeded(self, result: ImageResult) -> None:
        pass

    async def on_failed(
        self,
        error: Exception,
        display: DisplayParams,
        warnings: tuple[str, ...],
    ) -> None:
        pass


class ImageBackend(Protocol):
    async def generate(self, params: GenerationParameters) -> list[str]: ...


class TextModelBackend(Protocol):
    async def load_model(self, model_name: str) -> None: ...

    async def unload_model(self) -> None: ...


class PreferenceReader(Protocol):
    def read(self, user_id: int) -> UserPreferences: ...


@dataclass(eq=False)
class _PendingRequest:
    owner_id: int
    resolved: ResolvedRequest
    observer: GenerationObserver
    done: asyncio.Future[Outcome]
    task: QueuedTask | None = None
    state: RequestState = RequestState.QUEUED


def split_backend_images(
    images: list[str],
    count: int,
    controlnet_count: int,
) -> tuple[list[str], list[str | None]]:
    """Separate generated images from ControlNet previews.

    For batches the backend prepends a grid of all images, which is dropped.
    Previews follow the outputs in unit order and may be missing.
    """
    if count > 1:
        images = images[1:]
    outputs = images[:count]
    extras = images[count:]
    previews = [extras[index] if index < len(extras) else None for index in range(controlnet_count)]
    return outputs, previews


class GenerationOrchestrator:
    def __init__(
        self,
        queue: ExecutionQueue,
        resolver: ParameterResolver,
        preferences: PreferenceReader,
        image_backend: ImageBackend,
        *,
        text_backend: TextModelBackend | None = None,
        text_model: str = "",
    ) -> None:
        self.queue = queue
        self.resolver = resolver
        self.preferences = preferences
        self.image_backend = image_backend
        self.text_backend = text_backend
        self.text_model = text_model
        self._pending: dict[int, list[_PendingRequest]] = {}

    # -- image requests ------------------------------------------------------

    async def generate_image(
        self,
        request: ImageRequest,
        *,
        owner_id: int,
        observer: GenerationObserver | None = None,
    ) -> Outcome:
        observer = observer or GenerationObserver()
        try:
            resolved = self.resolver.resolve(request, self.preferences.read(owner_id))
        except ClientError as exc:
            log_error(logger, exc)
            return await self._fail(observer, exc, DisplayParams(), ())

        pending = _PendingRequest(
            owner_id=owner_id,
            resolved=resolved,
            observer=observer,
            done=asyncio.get_running_loop().create_future(),
        )

        async def on_position_changed(position: int) -> None:
            await observer.on_queue_position_changed(position, resolved.display)

        async def on_run() -> None:
            pending.state = RequestState.RUNNING
            outcome: Outcome = Failed(ClientError(CANCELLED_TEXT), resolved.display, resolved.warnings)
            try:
                outcome = await self._execute(resolved, observer)
            finally:
                pending.state = (
                    RequestState.SUCCEEDED if isinstance(outcome, Succeeded) else RequestState.FAILED
                )
                if not pending.done.done():
                    pending.done.set_result(outcome)

        pending.task = QueuedTask(ResourceClass.IMAGE, on_position_changed, on_run)
        self._pending.setdefault(owner_id, []).append(pending)
        try:
            await self.queue.enqueue(pending.task)
            return await pending.done
        finally:
            self._forget(pending)

    async def cancel_pending(self, owner_id: int) -> int:
        """Cancel the owner's requests that are still waiting in the queue."""
        cancelled = 0
        for pending in list(self._pending.get(owner_id, [])):
            if pending.task is None or pending.done.done():
                continue
            if not await self.queue.cancel(pending.task):
                continue
            pending.state = RequestState.FAILED
            outcome = await self._fail(
                pending.observer,
                ClientError(CANCELLED_TEXT),
                pending.resolved.display,
                pending.resolved.warnings,
            )
            pending.done.set_result(outcome)
            cancelled += 1
        return cancelled

    def request_status(self, owner_id: int) -> list[tuple[RequestState, int | None]]:
        """State and queue position of each of the owner's live requests."""
        return [
            (item.state, self.queue.position_of(item.task) if item.task else None)
            for item in self._pending.get(owner_id, [])
        ]

    # -- text work -----------------------------------------------------------

    async def run_text(
        self,
        work: Callable[[], Awaitable[T]],
        *,
        on_position_changed: Callable[[int], Awaitable[None]] | None = None,
    ) -> T:
        """Run ``work`` on the queue as text generation and return its result."""
        result: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        async def on_run() -> None:
            try:
                await self._switch_models(ResourceClass.TEXT)
                value = await work()
            except Exception as exc:
                result.set_exception(exc)
            else:
                result.set_result(value)
            finally:
                if not result.done():
                    result.cancel()

        await self.queue.register(
            ResourceClass.TEXT,
            on_position_changed or _ignore_position,
            on_run,
        )
        return await result

    # -- internals -----------------------------------------------------------

    async def _execute(self, resolved: ResolvedRequest, observer: GenerationObserver) -> Outcome:
        await _call_hook(observer.on_run_started, resolved.display)
        params = resolved.params
        try:
            await self._switch_models(ResourceClass.IMAGE)
            images = await self.image_backend.generate(params)
        except Exception as exc:
            log_error(logger, exc)
            return await self._fail(observer, exc, resolved.display, resolved.warnings)

        outputs, previews = split_backend_images(images, params.count, len(params.controlnets))
        result = ImageResult(
            images=tuple(outputs),
            seed=params.seed,
            display=resolved.display,
            warnings=resolved.warnings,
            controlnet_images=tuple(zip(params.controlnets, previews)),
        )
        logger.info("Generated %d image(s) with seed %d", len(outputs), params.seed)
        await _call_hook(observer.on_succeeded, result)
        return Succeeded(result)

    async def _switch_models(self, target: ResourceClass) -> None:
        if self.text_backend is None or self.queue.last_active_class is target:
            return
        if target is ResourceClass.TEXT:
            if self.text_model:
                logger.info("Loading text model %s", self.text_model)
                await self.text_backend.load_model(self.text_model)
        else:
            logger.info("Unloading text model before image generation")
            await self.text_backend.unload_model()

    async def _fail(
        self,
        observer: GenerationObserver,
        error: Exception,
        display: DisplayParams,
        warnings: tuple[str, ...],
    ) -> Failed:
        await _call_hook(observer.on_failed, error, display, warnings)
        return Failed(error, display, warnings)

    def _forget(self, pending: _PendingRequest) -> None:
        items = self._pending.get(pending.owner_id)
        if not items:
            return
        if pending in items:
            items.remove(pending)
        if not items:
            del self._pending[pending.owner_id]


async def _call_hook(hook: Callable[..., Awaitable[None]], *args: Any) -> None:
    try:
        await hook(*args)
    except Exception:
        logger.warning("Generation hook %s failed", getattr(hook, "__name__", hook), exc_info=True)


async def _ignore_position(position: int) -> None:
    return None
