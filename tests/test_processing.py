import json
import threading
import unittest

from snapsolve.client import ProviderRequest, ProviderResponse, ProviderRouter
from snapsolve.config import Settings, TaskConfig
from snapsolve.errors import ErrorKind, ProviderError
from snapsolve.executor import CancellationToken, ExecutorConfig, RequestExecutor
from snapsolve.memory import DebugMemoryStore, InMemoryStorage
from snapsolve.models import DEFAULT_REGISTRY
from snapsolve.parsing import DEBUG_CODE_PLACEHOLDER, ProblemInfo
from snapsolve.processing import OutcomeStatus, ProblemSolver, ProcessingSession

NO_WAIT = ExecutorConfig(backoff_base_sec=0.0, backoff_cap_sec=0.0)

PROBLEM_JSON = json.dumps(
    {
        "problem_title": "Two Sum",
        "description": "Return indices of the two numbers that add up to target.",
        "constraints": "2 <= n <= 10^4",
        "examples": [{"input": "[2,7,11,15], 9", "output": "[0,1]", "explanation": ""}],
        "code_template": {"full_code_stub": "def two_sum(nums, target):"},
        "goal": "Find two indices",
    }
)

SOLUTION_TEXT = (
    "```python\ndef two_sum(nums, target):\n    return [0, 1]\n```\n"
    "Thoughts:\n- Hash map lookup\n"
    "Time complexity: O(n) - one pass\n"
    "Space complexity: O(n) - the map\n"
)

DEBUG_TEXT = (
    "### Issues Identified\n- Returns a constant\n\n"
    "### Improved Solution\n```python\ndef two_sum(nums, target):\n    return []\n```\n"
)


class ScriptedClient:
    """Fake provider client keyed on what the prompt asks for."""

    provider = "gemini"

    def __init__(self, responses=None, gate: threading.Event | None = None) -> None:
        self.responses = list(responses or [])
        self.gate = gate
        self.requests: list[ProviderRequest] = []
        self.started = threading.Event()

    def send(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        if "extract a JSON object" in request.user_prompt:
            text = PROBLEM_JSON
            if self.gate is not None:
                self.started.set()
                self.gate.wait(5)
        elif "debugging" in request.user_prompt:
            text = DEBUG_TEXT
        else:
            text = SOLUTION_TEXT
        if self.responses:
            step = self.responses.pop(0)
            if isinstance(step, BaseException):
                raise step
            text = step
        return ProviderResponse(text=text, model=request.profile.name)


def _solver(client: ScriptedClient, store: DebugMemoryStore | None = None) -> ProblemSolver:
    executor = RequestExecutor(client.send, DEFAULT_REGISTRY, config=NO_WAIT)
    return ProblemSolver(executor, store if store is not None else DebugMemoryStore(InMemoryStorage()))


def _problem() -> ProblemInfo:
    return ProblemInfo.from_dict(json.loads(PROBLEM_JSON))


TASK = TaskConfig(model="gemini-2.5-pro")


class ProblemSolverTests(unittest.TestCase):
    def test_extract_problem(self) -> None:
        outcome = _solver(ScriptedClient()).extract_problem(["img"], TASK)

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.data.problem_title, "Two Sum")
        self.assertEqual(len(outcome.attempts), 1)

    def test_unparseable_extraction_is_a_parse_failure(self) -> None:
        outcome = _solver(ScriptedClient(["Sorry, I cannot read that."])).extract_problem(["img"], TASK)

        self.assertEqual(outcome.status, OutcomeStatus.FAILURE)
        self.assertEqual(outcome.error_kind, ErrorKind.PARSE)
        self.assertIn("Could not understand", outcome.error)
        self.assertEqual(len(outcome.attempts), 1)

    def test_generate_solution(self) -> None:
        client = ScriptedClient()
        outcome = _solver(client).generate_solution(_problem(), TASK)

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.data.code, "def two_sum(nums, target):\n    return [0, 1]")
        self.assertEqual(outcome.data.thoughts, ["Hash map lookup"])
        self.assertEqual(outcome.data.time_complexity, "O(n) - one pass")
        self.assertEqual(client.requests[0].images, ())

    def test_solve_directly(self) -> None:
        outcome = _solver(ScriptedClient(["```python\nprint(42)\n```"])).solve_directly(["img"], TASK)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.data.code, "print(42)")

    def test_debug_records_failing_attempt(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        outcome = _solver(ScriptedClient(), store).debug_solution(
            ["img"],
            _problem(),
            TASK,
            current_code="def two_sum(nums, target):\n    return [0, 1]",
            screenshot_analysis="Test case 2 failed: expected [1,2], got [0,1] (runtime error)",
        )

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.data.code, "def two_sum(nums, target):\n    return []")
        entry = store.entries()[0]
        self.assertFalse(entry.success)
        self.assertEqual(entry.failed_test_cases, ("2",))
        self.assertEqual(entry.error_message, "runtime error")
        self.assertEqual(entry.problem_statement, _problem().problem_statement)

    def test_debug_with_clean_analysis_records_working_attempt(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        _solver(ScriptedClient(), store).debug_solution(
            ["img"],
            _problem(),
            TASK,
            current_code="print(1)",
            screenshot_analysis="All tests passed",
        )
        self.assertTrue(store.entries()[0].success)

    def test_debug_without_current_code_records_nothing(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        outcome = _solver(ScriptedClient(["no code here"]), store).debug_solution(
            ["img"], _problem(), TASK
        )
        self.assertEqual(outcome.data.code, DEBUG_CODE_PLACEHOLDER)
        self.assertEqual(len(store), 0)

    def test_rate_limit_surfaces_provider_detail(self) -> None:
        client = ScriptedClient([ProviderError("Quota exceeded for project", provider="gemini", status=429)])
        outcome = _solver(client).generate_solution(_problem(), TASK)

        self.assertEqual(outcome.error_kind, ErrorKind.RATE_LIMIT)
        self.assertIn("wait a few minutes", outcome.error)
        self.assertIn("Quota exceeded for project", outcome.detail)
        self.assertEqual(len(client.requests), 1)

    def test_exhausted_retries_report_attempts(self) -> None:
        errors = [ProviderError("boom", status=500)] * 3
        outcome = _solver(ScriptedClient(errors)).generate_solution(_problem(), TASK)

        self.assertEqual(outcome.status, OutcomeStatus.FAILURE)
        self.assertEqual(outcome.error_kind, ErrorKind.OTHER)
        self.assertEqual(len(outcome.attempts), 3)

    def test_cancelled_token(self) -> None:
        token = CancellationToken()
        token.cancel()
        outcome = _solver(ScriptedClient()).extract_problem(["img"], TASK, token)
        self.assertEqual(outcome.status, OutcomeStatus.CANCELED)

    def test_record_verdict(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        entry = _solver(ScriptedClient(), store).record_verdict(
            _problem(), "print(1)", success=True, language="python"
        )
        self.assertEqual(store.last_working_for(_problem().problem_statement), entry)


class ProcessingSessionTests(unittest.TestCase):
    def _session(self, client: ScriptedClient) -> ProcessingSession:
        session = ProcessingSession(
            Settings(),
            router=ProviderRouter({"gemini": client}),
            memory=DebugMemoryStore(InMemoryStorage()),
            executor_config=NO_WAIT,
        )
        self.addCleanup(session.shutdown)
        return session

    def test_primary_flow_extracts_then_solves(self) -> None:
        session = self._session(ScriptedClient())
        outcome = session.process_screenshots(["img"]).result(timeout=5)

        self.assertTrue(outcome.ok)
        self.assertEqual(session.problem_info.problem_title, "Two Sum")
        self.assertEqual(session.current_code, outcome.data.code)

    def test_debug_requires_extracted_problem(self) -> None:
        session = self._session(ScriptedClient())
        outcome = session.process_debug_screenshots(["img"]).result(timeout=5)

        self.assertEqual(outcome.status, OutcomeStatus.FAILURE)
        self.assertIn("No problem has been extracted", outcome.error)

    def test_debug_flow_updates_current_code(self) -> None:
        session = self._session(ScriptedClient())
        session.process_screenshots(["img"]).result(timeout=5)

        outcome = session.process_debug_screenshots(["img"], screenshot_analysis="").result(timeout=5)
        self.assertTrue(outcome.ok)
        self.assertEqual(session.current_code, "def two_sum(nums, target):\n    return []")
        self.assertEqual(len(session.memory), 1)

    def test_cancelling_primary_leaves_auxiliary_running(self) -> None:
        gate = threading.Event()
        client = ScriptedClient(gate=gate)
        session = self._session(client)
        session.problem_info = _problem()
        session.current_code = "print(1)"

        primary = session.process_screenshots(["img"])
        self.assertTrue(client.started.wait(5))
        auxiliary = session.process_debug_screenshots(["img"])

        self.assertTrue(session.cancel_primary())
        self.assertTrue(auxiliary.result(timeout=5).ok)
        gate.set()
        self.assertEqual(primary.result(timeout=5).status, OutcomeStatus.CANCELED)

    def test_new_primary_invocation_cancels_previous(self) -> None:
        gate = threading.Event()
        client = ScriptedClient(gate=gate)
        session = self._session(client)

        first = session.process_screenshots(["img"])
        self.assertTrue(client.started.wait(5))
        second = session.process_direct(["img"])
        gate.set()

        self.assertEqual(first.result(timeout=5).status, OutcomeStatus.CANCELED)
        self.assertTrue(second.result(timeout=5).ok)

    def test_reload_rebuilds_solver_with_new_settings(self) -> None:
        session = self._session(ScriptedClient())
        before = session.solver

        session.reload(Settings(language="cpp"))

        self.assertIsNot(session.solver, before)
        self.assertIs(session.solver.memory, before.memory)
        self.assertEqual(session.settings.language, "cpp")


if __name__ == "__main__":
    unittest.main()
