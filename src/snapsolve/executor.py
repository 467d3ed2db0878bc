"""Classified-error retry loop with model downgrade and payload shrinking.

The loop is a small state machine::

    ATTEMPTING -> SUCCESS
               -> RETRYING -> ATTEMPTING
               -> EXHAUSTED
               -> CANCELED

What happens after a failure is decided by :func:`plan_recovery`, a pure
function of the error kind and the current :class:`RequestContext`. The
executor only applies the plan, which keeps the policy testable without a
network.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

from .client import ProviderRequest, ProviderResponse
from .errors import (
    ErrorKind,
    NonRecoverableError,
    RequestCanceled,
    RetriesExhaustedError,
    classify_error,
)
from .models import ModelProfile, ModelRegistry, TaskKind
from .selector import select_profile
from .shaper import halve_images, shape_images

logger = logging.getLogger(__name__)

OUTPUT_TOKEN_FLOOR = 2048
DEFAULT_MAX_ATTEMPTS = 3

SendFn = Callable[[ProviderRequest], ProviderResponse]


class ExecutorState(str, Enum):
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    CANCELED = "canceled"


class RecoveryAction(str, Enum):
    SHRINK_OUTPUT = "shrink_output"
    DOWNGRADE_MODEL = "downgrade_model"
    SHRINK_IMAGES = "shrink_images"
    FALLBACK_TIER = "fallback_tier"
    BACKOFF = "backoff"
    FAIL = "fail"


class CancellationToken:
    """Caller-owned abort signal for one flow."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once on cancel; returns a function that unregisters it.

        An already-cancelled token runs the callback immediately.
        """

        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        callback()
        return lambda: None

    def _discard(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""

        if seconds <= 0:
            return self.cancelled
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCanceled()


@dataclass
class RequestContext:
    profile: ModelProfile
    output_tokens: int
    images: list[str]
    task_kind: TaskKind
    attempt: int = 0


@dataclass(frozen=True)
class RecoveryPlan:
    action: RecoveryAction
    context: RequestContext
    delay_sec: float = 0.0


@dataclass(frozen=True)
class ExecutorConfig:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    output_token_floor: int = OUTPUT_TOKEN_FLOOR
    backoff_base_sec: float = 1.0
    backoff_cap_sec: float = 5.0


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    model: str
    elapsed_ms: int
    image_count: int
    output_tokens: int
    outcome: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None


@dataclass
class ExecutionResult:
    response: ProviderResponse
    context: RequestContext
    attempts: list[AttemptRecord] = field(default_factory=list)
    state: ExecutorState = ExecutorState.SUCCESS

    @property
    def text(self) -> str:
        return self.response.text


def backoff_delay(attempt: int, *, base_sec: float = 1.0, cap_sec: float = 5.0) -> float:
    """``min(base * 2^(attempt-1), cap)`` for the attempt that just failed."""

    return min(base_sec * (2 ** max(0, attempt - 1)), cap_sec)


def _clamp_budget(tokens: int, profile: ModelProfile, floor: int) -> int:
    return max(floor, min(tokens, profile.max_output_tokens))


def plan_recovery(
    kind: ErrorKind,
    context: RequestContext,
    registry: ModelRegistry,
    config: ExecutorConfig | None = None,
) -> RecoveryPlan:
    """Decide how to react to one classified failure.

    Returns the action and the context for the next attempt. The input
    context is left untouched.
    """

    config = config or ExecutorConfig()
    floor = config.output_token_floor

    if kind in {
        ErrorKind.AUTHORIZATION,
        ErrorKind.RATE_LIMIT,
        ErrorKind.PARSE,
        ErrorKind.CANCELED,
    }:
        return RecoveryPlan(RecoveryAction.FAIL, context)

    if kind is ErrorKind.OUTPUT_TOKEN_LIMIT:
        if context.output_tokens > floor:
            halved = max(floor, context.output_tokens // 2)
            return RecoveryPlan(
                RecoveryAction.SHRINK_OUTPUT,
                replace(context, output_tokens=halved),
            )
        lighter = registry.lightest(context.profile.provider)
        return RecoveryPlan(
            RecoveryAction.DOWNGRADE_MODEL,
            replace(
                context,
                profile=lighter,
                output_tokens=_clamp_budget(context.output_tokens, lighter, floor),
                images=shape_images(context.images, lighter) if context.images else [],
            ),
        )

    if kind is ErrorKind.IMAGE_LIMIT and len(context.images) > 1:
        return RecoveryPlan(
            RecoveryAction.SHRINK_IMAGES,
            replace(context, images=halve_images(context.images)),
        )

    if kind is ErrorKind.TRANSPORT:
        fallback = registry.step_down(context.profile.name)
        return RecoveryPlan(
            RecoveryAction.FALLBACK_TIER,
            replace(
                context,
                profile=fallback,
                output_tokens=_clamp_budget(context.output_tokens, fallback, floor),
                images=shape_images(context.images, fallback) if context.images else [],
            ),
        )

    delay = backoff_delay(
        max(1, context.attempt),
        base_sec=config.backoff_base_sec,
        cap_sec=config.backoff_cap_sec,
    )
    return RecoveryPlan(RecoveryAction.BACKOFF, replace(context), delay_sec=delay)


class RequestExecutor:
    """Runs one logical model call through the retry state machine."""

    def __init__(
        self,
        send: SendFn,
        registry: ModelRegistry,
        *,
        config: ExecutorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.send = send
        self.registry = registry
        self.config = config or ExecutorConfig()
        self._clock = clock

    def prepare(
        self,
        *,
        model: str | None,
        images: Sequence[str],
        task_kind: TaskKind,
        max_output_tokens: int | None = None,
    ) -> RequestContext:
        profile = select_profile(model, len(images), task_kind, self.registry)
        requested = max_output_tokens or profile.max_output_tokens
        return RequestContext(
            profile=profile,
            output_tokens=_clamp_budget(requested, profile, self.config.output_token_floor),
            images=shape_images(images, profile) if images else [],
            task_kind=task_kind,
        )

    def execute(
        self,
        *,
        model: str | None,
        user_prompt: str,
        task_kind: TaskKind,
        system_prompt: str = "",
        images: Sequence[str] = (),
        token: CancellationToken | None = None,
        max_attempts: int | None = None,
        max_output_tokens: int | None = None,
    ) -> ExecutionResult:
        token = token or CancellationToken()
        limit = max(1, int(max_attempts or self.config.max_attempts))
        attempts: list[AttemptRecord] = []

        context = self.prepare(
            model=model,
            images=images,
            task_kind=task_kind,
            max_output_tokens=max_output_tokens,
        )
        state = ExecutorState.ATTEMPTING

        while context.attempt < limit:
            if token.cancelled:
                self._transition(state, ExecutorState.CANCELED, context)
                raise RequestCanceled(attempts=attempts)

            context.attempt += 1
            state = ExecutorState.ATTEMPTING
            request = ProviderRequest(
                profile=context.profile,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                images=tuple(context.images),
                max_output_tokens=context.output_tokens,
            )

            started = self._clock()
            try:
                response = self._send_interruptibly(request, token)
            except Exception as exc:
                elapsed_ms = int((self._clock() - started) * 1000)
                if token.cancelled:
                    self._transition(state, ExecutorState.CANCELED, context)
                    raise RequestCanceled(attempts=attempts) from exc

                kind = classify_error(exc)
                attempts.append(self._record(context, elapsed_ms, "error", kind=kind, error=exc))
                plan = plan_recovery(kind, context, self.registry, self.config)

                if plan.action is RecoveryAction.FAIL:
                    self._transition(state, ExecutorState.EXHAUSTED, context)
                    raise NonRecoverableError(kind, exc, attempts=attempts) from exc

                if context.attempt >= limit:
                    self._transition(state, ExecutorState.EXHAUSTED, context)
                    raise RetriesExhaustedError(exc, kind=kind, attempts=attempts) from exc

                state = self._transition(state, ExecutorState.RETRYING, context)
                logger.info(
                    "Attempt %d/%d on %s failed (%s): %s",
                    context.attempt,
                    limit,
                    context.profile.name,
                    kind.value,
                    plan.action.value,
                )
                if plan.delay_sec and token.wait(plan.delay_sec):
                    self._transition(state, ExecutorState.CANCELED, context)
                    raise RequestCanceled(attempts=attempts) from exc

                context = plan.context
                continue

            elapsed_ms = int((self._clock() - started) * 1000)
            attempts.append(
                self._record(
                    context,
                    elapsed_ms,
                    "success",
                    prompt_tokens=response.prompt_tokens,
                    completion_tokens=response.completion_tokens,
                )
            )
            if token.cancelled:
                self._transition(state, ExecutorState.CANCELED, context)
                raise RequestCanceled(attempts=attempts)

            self._transition(state, ExecutorState.SUCCESS, context)
            return ExecutionResult(response=response, context=context, attempts=attempts)

        # Only reachable when max_attempts leaves no room for a single call.
        raise RetriesExhaustedError(
            RuntimeError("No attempts were made"),
            kind=ErrorKind.OTHER,
            attempts=attempts,
        )

    def _send_interruptibly(self, request: ProviderRequest, token: CancellationToken) -> ProviderResponse:
        """Run ``send`` on a worker thread and stop waiting as soon as the token fires.

        An abandoned call keeps running until its own timeout; its result is dropped.
        """

        outcome: dict[str, object] = {}
        finished = threading.Event()

        def run() -> None:
            try:
                outcome["response"] = self.send(request)
            except BaseException as exc:  # re-raised on the calling thread
                outcome["error"] = exc
            finally:
                finished.set()

        unregister = token.add_callback(finished.set)
        try:
            worker = threading.Thread(target=run, name="snapsolve-send", daemon=True)
            worker.start()
            finished.wait()
        finally:
            unregister()

        if "error" in outcome:
            raise outcome["error"]  # type: ignore[misc]
        if "response" not in outcome:
            raise RequestCanceled()
        return outcome["response"]  # type: ignore[return-value]

    def _record(
        self,
        context: RequestContext,
        elapsed_ms: int,
        outcome: str,
        *,
        kind: ErrorKind | None = None,
        error: BaseException | None = None,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
    ) -> AttemptRecord:
        record = AttemptRecord(
            attempt=context.attempt,
            model=context.profile.name,
            elapsed_ms=elapsed_ms,
            image_count=len(context.images),
            output_tokens=context.output_tokens,
            outcome=outcome,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            error_kind=kind,
            error=str(error)[:400] if error is not None else None,
        )
        logger.info(
            "model call task=%s attempt=%d model=%s elapsed_ms=%d images=%d "
            "max_output=%d prompt_tokens=%s completion_tokens=%s outcome=%s",
            context.task_kind.value,
            record.attempt,
            record.model,
            record.elapsed_ms,
            record.image_count,
            record.output_tokens,
            record.prompt_tokens,
            record.completion_tokens,
            outcome if kind is None else f"{outcome}:{kind.value}",
        )
        return record

    def _transition(
        self,
        current: ExecutorState,
        target: ExecutorState,
        context: RequestContext,
    ) -> ExecutorState:
        logger.debug(
            "executor %s -> %s (attempt %d, model %s)",
            current.value,
            target.value,
            context.attempt,
            context.profile.name,
        )
        return target
