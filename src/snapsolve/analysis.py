"""Heuristics that turn screenshot-analysis text into test-failure records."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .memory import PreviousSolution

TEST_CASE_RE = re.compile(r"test\s*case\s*#?\s*(\d+)[^\n]*?fail", flags=re.IGNORECASE)
EXPECTED_RE = re.compile(r"\bexpected(?:\s+output)?\s*[:=]?\s*([^\s,]+)", flags=re.IGNORECASE)
ACTUAL_RE = re.compile(
    r"(?:\bactual(?:\s+output)?|\bgot\b)\s*[:=]?\s*([^\s,]+)",
    flags=re.IGNORECASE,
)
ERROR_VOCAB_RE = re.compile(
    r"(runtime error|time limit exceeded|timeout|timed out|memory limit exceeded|"
    r"out of memory|memory|assertion(?:error)?|null pointer|nullpointerexception|null|exception)",
    flags=re.IGNORECASE,
)
GENERIC_FAILURE_RE = re.compile(r"fail|error", flags=re.IGNORECASE)
FUNCTION_RE = re.compile(r"(?:def|function|public|private|protected)\s+(\w+)")

CONTEXT_WINDOW = 200


class FailureCategory(str, Enum):
    LOGIC = "logic"
    RUNTIME = "runtime"
    TIMEOUT = "timeout"
    MEMORY = "memory"


@dataclass(frozen=True)
class TestCaseFailure:
    __test__ = False  # not a pytest test class

    test_case_id: str
    expected: str
    actual: str
    category: FailureCategory
    error_message: str | None = None
    synthetic: bool = False


def categorize_error(error_text: str) -> FailureCategory:
    """Bucket raw error text; timeout beats memory beats runtime beats logic."""

    lowered = error_text.lower()
    if "timeout" in lowered or "time limit" in lowered or "timed out" in lowered:
        return FailureCategory.TIMEOUT
    if "memory" in lowered:
        return FailureCategory.MEMORY
    if "runtime" in lowered or "null" in lowered or "exception" in lowered:
        return FailureCategory.RUNTIME
    return FailureCategory.LOGIC


def analyze_test_case_failures(
    screenshot_analysis: str,
    *,
    synthesize_generic: bool = True,
) -> list[TestCaseFailure]:
    """Extract failing test cases from free text.

    When nothing structured matches but the text still talks about failures
    or errors, a single synthetic placeholder is returned (disable with
    ``synthesize_generic=False``). That entry only says "something failed";
    its expected/actual values are placeholders.
    """

    if not screenshot_analysis:
        return []

    failures: list[TestCaseFailure] = []
    seen: set[str] = set()
    for match in TEST_CASE_RE.finditer(screenshot_analysis):
        test_id = match.group(1)
        if test_id in seen:
            continue
        seen.add(test_id)

        start = max(0, match.start() - CONTEXT_WINDOW)
        end = min(len(screenshot_analysis), match.end() + CONTEXT_WINDOW)
        # Prefer tokens after the match; fall back to the preceding window.
        after = screenshot_analysis[match.start():end]
        around = screenshot_analysis[start:end]

        expected = EXPECTED_RE.search(after) or EXPECTED_RE.search(around)
        actual = ACTUAL_RE.search(after) or ACTUAL_RE.search(around)
        error = ERROR_VOCAB_RE.search(after) or ERROR_VOCAB_RE.search(around)
        error_text = error.group(1) if error else ""

        failures.append(
            TestCaseFailure(
                test_case_id=test_id,
                expected=expected.group(1).strip() if expected else "Unknown",
                actual=actual.group(1).strip() if actual else "Unknown",
                category=categorize_error(error_text),
                error_message=error_text or None,
            )
        )

    if failures:
        return failures

    if synthesize_generic and GENERIC_FAILURE_RE.search(screenshot_analysis):
        error = ERROR_VOCAB_RE.search(screenshot_analysis)
        return [
            TestCaseFailure(
                test_case_id="1",
                expected="Correct output",
                actual="Incorrect output",
                category=categorize_error(error.group(1)) if error else FailureCategory.LOGIC,
                error_message="Test case failure detected in screenshot",
                synthetic=True,
            )
        ]

    return []


def extract_function_names(code: str) -> list[str]:
    return FUNCTION_RE.findall(code)


def summarize_recent_changes(previous: list[PreviousSolution], current_code: str) -> list[str]:
    """Coarse structural diff against the most recent stored attempt."""

    if not previous:
        return []

    last_code = previous[0].code
    changes: list[str] = []

    last_lines = last_code.split("\n")
    current_lines = current_code.split("\n")
    if len(last_lines) != len(current_lines):
        changes.append(
            f"Code length changed from {len(last_lines)} to {len(current_lines)} lines"
        )

    last_functions = extract_function_names(last_code)
    current_functions = extract_function_names(current_code)
    if len(last_functions) != len(current_functions):
        changes.append(
            f"Number of functions changed from {len(last_functions)} to {len(current_functions)}"
        )

    return changes
