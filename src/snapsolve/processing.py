"""Extraction, solution and debug flows built on the request executor."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .analysis import TestCaseFailure
from .client import ProviderRouter, build_router
from .config import Settings, TaskConfig
from .errors import (
    ErrorKind,
    NonRecoverableError,
    RequestCanceled,
    RetriesExhaustedError,
    SnapsolveError,
    user_message,
)
from .executor import (
    AttemptRecord,
    CancellationToken,
    ExecutionResult,
    ExecutorConfig,
    RequestExecutor,
)
from .memory import DebugMemoryStore, JsonFileStorage, PreviousSolution
from .models import DEFAULT_REGISTRY, ModelRegistry, TaskKind
from .parsing import (
    DEBUG_CODE_PLACEHOLDER,
    ProblemInfo,
    parse_debug_response,
    parse_problem_json,
    parse_solution_response,
)
from .prompts import (
    IMPROVED_SOLUTION_SECTION,
    PromptBundle,
    build_debug_context,
    build_debug_prompt,
    build_direct_prompt,
    build_extraction_prompt,
    build_solution_prompt,
)

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELED = "canceled"


@dataclass(frozen=True)
class Outcome:
    """Tagged result of a flow; expected failures are values, not exceptions."""

    status: OutcomeStatus
    data: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    detail: str | None = None
    attempts: tuple[AttemptRecord, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @classmethod
    def success(cls, data: Any, attempts: Sequence[AttemptRecord] = ()) -> Outcome:
        return cls(status=OutcomeStatus.SUCCESS, data=data, attempts=tuple(attempts))

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        detail: str | None = None,
        attempts: Sequence[AttemptRecord] = (),
    ) -> Outcome:
        return cls(
            status=OutcomeStatus.FAILURE,
            error=message,
            error_kind=kind,
            detail=detail,
            attempts=tuple(attempts),
        )

    @classmethod
    def canceled(cls, attempts: Sequence[AttemptRecord] = ()) -> Outcome:
        return cls(
            status=OutcomeStatus.CANCELED,
            error=user_message(ErrorKind.CANCELED),
            error_kind=ErrorKind.CANCELED,
            attempts=tuple(attempts),
        )


@dataclass(frozen=True)
class SolutionResult:
    code: str
    thoughts: list[str]
    time_complexity: str
    space_complexity: str


@dataclass(frozen=True)
class DebugResult:
    code: str
    analysis: str
    thoughts: list[str]
    failed_test_cases: list[TestCaseFailure] = field(default_factory=list)
    recorded: PreviousSolution | None = None


class ProblemSolver:
    """The three provider-backed operations plus direct mode."""

    def __init__(
        self,
        executor: RequestExecutor,
        memory: DebugMemoryStore,
        *,
        synthesize_generic_failures: bool = True,
    ) -> None:
        self.executor = executor
        self.memory = memory
        self.synthesize_generic_failures = synthesize_generic_failures

    @property
    def registry(self) -> ModelRegistry:
        return self.executor.registry

    def extract_problem(
        self,
        images: Sequence[str],
        task_config: TaskConfig,
        token: CancellationToken | None = None,
    ) -> Outcome:
        prompt = build_extraction_prompt(task_config.language)
        result: ExecutionResult | None = None
        try:
            result = self._call(TaskKind.EXTRACTION, prompt, images, task_config, token)
            info = parse_problem_json(result.text)
        except SnapsolveError as exc:
            return self._failure(exc, task_config, result)

        logger.info("Extracted problem: %s", info.problem_title or info.goal or "<untitled>")
        return Outcome.success(info, result.attempts)

    def generate_solution(
        self,
        problem: ProblemInfo,
        task_config: TaskConfig,
        token: CancellationToken | None = None,
    ) -> Outcome:
        prompt = build_solution_prompt(problem, task_config.language)
        try:
            result = self._call(TaskKind.SOLUTION, prompt, (), task_config, token)
        except SnapsolveError as exc:
            return self._failure(exc, task_config)

        parsed = parse_solution_response(result.text)
        if not parsed.code:
            logger.warning("Solution response contained no recognizable code")
        return Outcome.success(
            SolutionResult(
                code=parsed.code,
                thoughts=parsed.thoughts,
                time_complexity=parsed.time_complexity,
                space_complexity=parsed.space_complexity,
            ),
            result.attempts,
        )

    def solve_directly(
        self,
        images: Sequence[str],
        task_config: TaskConfig,
        token: CancellationToken | None = None,
    ) -> Outcome:
        prompt = build_direct_prompt(task_config.language)
        try:
            result = self._call(TaskKind.SOLUTION, prompt, images, task_config, token)
        except SnapsolveError as exc:
            return self._failure(exc, task_config)

        parsed = parse_solution_response(result.text)
        return Outcome.success(
            SolutionResult(
                code=parsed.code,
                thoughts=parsed.thoughts,
                time_complexity=parsed.time_complexity,
                space_complexity=parsed.space_complexity,
            ),
            result.attempts,
        )

    def debug_solution(
        self,
        images: Sequence[str],
        problem: ProblemInfo,
        task_config: TaskConfig,
        token: CancellationToken | None = None,
        *,
        current_code: str = "",
        screenshot_analysis: str = "",
    ) -> Outcome:
        """Ask for targeted debugging help and remember the attempt.

        The attempt is stored as successful only when screenshot analysis was
        supplied and showed no failures at all.
        """

        statement = problem.problem_statement
        context = build_debug_context(
            self.memory,
            current_code=current_code,
            problem_statement=statement,
            screenshot_analysis=screenshot_analysis,
            synthesize_generic=self.synthesize_generic_failures,
        )
        prompt = build_debug_prompt(statement, task_config.language, context)

        try:
            result = self._call(TaskKind.DEBUG, prompt, images, task_config, token)
        except SnapsolveError as exc:
            return self._failure(exc, task_config)

        parsed = parse_debug_response(result.text, improved_section=IMPROVED_SOLUTION_SECTION)

        recorded = None
        if current_code:
            failures = context.failed_test_cases
            first_error = next((f.error_message for f in failures if f.error_message), None)
            recorded = self.memory.record_attempt(
                code=current_code,
                success=bool(screenshot_analysis) and not failures,
                language=task_config.language,
                problem_statement=statement,
                failed_test_cases=[f.test_case_id for f in failures if not f.synthetic],
                error_message=first_error,
            )

        return Outcome.success(
            DebugResult(
                code=parsed.code,
                analysis=parsed.analysis,
                thoughts=parsed.thoughts,
                failed_test_cases=list(context.failed_test_cases),
                recorded=recorded,
            ),
            result.attempts,
        )

    def record_verdict(
        self,
        problem: ProblemInfo,
        code: str,
        *,
        success: bool,
        language: str,
        failed_test_cases: Sequence[str] = (),
        error_message: str | None = None,
    ) -> PreviousSolution:
        """Store the caller's verdict on a solution (e.g. it passed the judge)."""

        return self.memory.record_attempt(
            code=code,
            success=success,
            language=language,
            problem_statement=problem.problem_statement,
            failed_test_cases=list(failed_test_cases),
            error_message=error_message,
        )

    def _call(
        self,
        kind: TaskKind,
        prompt: PromptBundle,
        images: Sequence[str],
        task_config: TaskConfig,
        token: CancellationToken | None,
    ) -> ExecutionResult:
        return self.executor.execute(
            model=task_config.model,
            system_prompt=prompt.system,
            user_prompt=prompt.user,
            images=images,
            task_kind=kind,
            token=token,
            max_attempts=task_config.max_attempts,
            max_output_tokens=task_config.max_output_tokens,
        )

    def _failure(
        self,
        exc: SnapsolveError,
        task_config: TaskConfig,
        result: ExecutionResult | None = None,
    ) -> Outcome:
        attempts = list(getattr(exc, "attempts", None) or (result.attempts if result else []))
        if isinstance(exc, RequestCanceled):
            logger.info("Request canceled after %d attempts", len(attempts))
            return Outcome.canceled(attempts)

        provider = self.registry.profile(task_config.model).provider
        if isinstance(exc, NonRecoverableError):
            detail = str(exc.cause)
        elif isinstance(exc, RetriesExhaustedError):
            detail = str(exc.last_error)
        else:
            detail = str(exc)

        logger.warning("Request failed (%s): %s", exc.kind.value, detail)
        return Outcome.failure(
            exc.kind,
            user_message(exc.kind, provider),
            detail=detail,
            attempts=attempts,
        )


class _Flow:
    """One cancellable lane of work with at most one invocation in flight."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"snapsolve-{name}")
        self._lock = threading.Lock()
        self._token: CancellationToken | None = None

    def start(self, work: Callable[[CancellationToken], Outcome]) -> Future[Outcome]:
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            token = CancellationToken()
            self._token = token
            return self._pool.submit(work, token)

    def cancel(self) -> bool:
        with self._lock:
            token, self._token = self._token, None
        if token is None or token.cancelled:
            return False
        token.cancel()
        return True

    def shutdown(self) -> None:
        self.cancel()
        self._pool.shutdown(wait=True)


class ProcessingSession:
    """Primary (extract -> solve) and auxiliary (debug) flows for one user.

    Each flow has its own cancellation token, so canceling one leaves the
    other running.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        router: ProviderRouter | None = None,
        memory: DebugMemoryStore | None = None,
        registry: ModelRegistry = DEFAULT_REGISTRY,
        executor_config: ExecutorConfig | None = None,
    ) -> None:
        self.settings = settings
        self._base_registry = registry
        self._executor_config = executor_config
        self._router_override = router

        if memory is None:
            memory = DebugMemoryStore(JsonFileStorage(settings.memory_path))
            memory.load()
        self.memory = memory

        self.solver = self._build_solver()
        self.problem_info: ProblemInfo | None = None
        self.current_code = ""

        self._primary = _Flow("primary")
        self._auxiliary = _Flow("auxiliary")

    def reload(self, settings: Settings) -> None:
        """Pick up new settings; in-flight calls keep the solver they started with."""

        self.settings = settings
        self.solver = self._build_solver()

    def process_screenshots(self, images: Sequence[str]) -> Future[Outcome]:
        images = list(images)
        return self._primary.start(lambda token: self._run_primary(images, token))

    def process_extraction(self, images: Sequence[str]) -> Future[Outcome]:
        images = list(images)
        solver, settings = self.solver, self.settings

        def work(token: CancellationToken) -> Outcome:
            outcome = solver.extract_problem(
                images, settings.task_config(TaskKind.EXTRACTION), token
            )
            if outcome.ok:
                self.problem_info = outcome.data
            return outcome

        return self._primary.start(work)

    def process_solution(self, problem: ProblemInfo) -> Future[Outcome]:
        """Generate a solution for an already extracted problem."""

        self.problem_info = problem
        solver, settings = self.solver, self.settings

        def work(token: CancellationToken) -> Outcome:
            outcome = solver.generate_solution(
                problem, settings.task_config(TaskKind.SOLUTION), token
            )
            if outcome.ok:
                self.current_code = outcome.data.code
            return outcome

        return self._primary.start(work)

    def process_direct(self, images: Sequence[str]) -> Future[Outcome]:
        images = list(images)
        solver, settings = self.solver, self.settings

        def work(token: CancellationToken) -> Outcome:
            outcome = solver.solve_directly(images, settings.task_config(TaskKind.SOLUTION), token)
            if outcome.ok:
                self.current_code = outcome.data.code
            return outcome

        return self._primary.start(work)

    def process_debug_screenshots(
        self,
        images: Sequence[str],
        *,
        screenshot_analysis: str = "",
    ) -> Future[Outcome]:
        images = list(images)
        return self._auxiliary.start(
            lambda token: self._run_debug(images, screenshot_analysis, token)
        )

    def cancel_primary(self) -> bool:
        return self._primary.cancel()

    def cancel_auxiliary(self) -> bool:
        return self._auxiliary.cancel()

    def cancel_all(self) -> bool:
        primary = self.cancel_primary()
        auxiliary = self.cancel_auxiliary()
        return primary or auxiliary

    def shutdown(self) -> None:
        self._primary.shutdown()
        self._auxiliary.shutdown()

    def _build_solver(self) -> ProblemSolver:
        router = self._router_override or build_router(
            self.settings.api_keys, self.settings.base_urls
        )
        registry = self._base_registry
        if router.providers:
            registry = registry.restricted_to(router.providers)
        else:
            logger.warning("No provider API keys configured; requests will fail until one is set")

        executor = RequestExecutor(router.send, registry, config=self._executor_config)
        return ProblemSolver(executor, self.memory)

    def _run_primary(self, images: list[str], token: CancellationToken) -> Outcome:
        solver, settings = self.solver, self.settings

        extracted = solver.extract_problem(images, settings.task_config(TaskKind.EXTRACTION), token)
        if not extracted.ok:
            return extracted
        self.problem_info = extracted.data

        solved = solver.generate_solution(
            extracted.data, settings.task_config(TaskKind.SOLUTION), token
        )
        if solved.ok:
            self.current_code = solved.data.code
        return solved

    def _run_debug(
        self,
        images: list[str],
        screenshot_analysis: str,
        token: CancellationToken,
    ) -> Outcome:
        problem = self.problem_info
        if problem is None:
            return Outcome.failure(
                ErrorKind.OTHER,
                "No problem has been extracted yet. Process the problem screenshots first.",
            )

        outcome = self.solver.debug_solution(
            images,
            problem,
            self.settings.task_config(TaskKind.DEBUG),
            token,
            current_code=self.current_code,
            screenshot_analysis=screenshot_analysis,
        )
        if outcome.ok and outcome.data.code != DEBUG_CODE_PLACEHOLDER:
            self.current_code = outcome.data.code
        return outcome
