import unittest

from snapsolve.memory import DebugMemoryStore, InMemoryStorage
from snapsolve.parsing import ProblemInfo
from snapsolve.prompts import (
    DEBUG_SECTIONS,
    build_debug_context,
    build_debug_prompt,
    build_direct_prompt,
    build_extraction_prompt,
    build_solution_prompt,
)

WORKING_CODE = "def two_sum(nums, target):\n    seen = {}\n    for i, n in enumerate(nums):\n        if target - n in seen:\n            return [seen[target - n], i]\n        seen[n] = i"


def _store() -> DebugMemoryStore:
    return DebugMemoryStore(InMemoryStorage())


class ExtractionAndSolutionPromptTests(unittest.TestCase):
    def test_extraction_prompt_asks_for_json_schema(self) -> None:
        prompt = build_extraction_prompt("java")
        self.assertIn('"problem_title"', prompt.user)
        self.assertIn('"full_code_stub"', prompt.user)
        self.assertIn("assume java", prompt.user)
        self.assertTrue(prompt.system)

    def test_solution_prompt_includes_stub_and_answer_layout(self) -> None:
        problem = ProblemInfo.from_dict(
            {
                "description": "Return indices of two numbers adding to target.",
                "constraints": "2 <= n <= 10^4",
                "examples": [{"input": "[2,7,11,15], 9", "output": "[0,1]"}],
                "code_template": {"full_code_stub": "class Solution:\n    def twoSum(self, nums, target):"},
            }
        )
        prompt = build_solution_prompt(problem, "python")

        self.assertIn("class Solution:", prompt.user)
        self.assertIn("2 <= n <= 10^4", prompt.user)
        self.assertIn("Input: [2,7,11,15], 9", prompt.user)
        self.assertIn("Time complexity:", prompt.user)
        self.assertIn("```python", prompt.user)

    def test_direct_prompt_names_language(self) -> None:
        self.assertIn("in cpp", build_direct_prompt("cpp").user)


class DebugPromptTests(unittest.TestCase):
    def test_previous_working_solution_is_included_verbatim(self) -> None:
        store = _store()
        store.record_attempt(
            code=WORKING_CODE,
            success=True,
            language="python",
            problem_statement="Two Sum",
        )

        context = build_debug_context(store, current_code="def two_sum(): pass", problem_statement="Two Sum")
        prompt = build_debug_prompt("Two Sum", "python", context)

        self.assertIn(WORKING_CODE, prompt.user)
        self.assertIn("PREVIOUS WORKING SOLUTION", prompt.user)
        self.assertIn("Compare current code with the previous working solution", prompt.user)

    def test_other_problems_do_not_leak_into_prompt(self) -> None:
        store = _store()
        store.record_attempt(
            code=WORKING_CODE,
            success=True,
            language="python",
            problem_statement="Two Sum II",
        )

        context = build_debug_context(store, current_code="x = 1", problem_statement="Two Sum")
        prompt = build_debug_prompt("Two Sum", "python", context)
        self.assertNotIn(WORKING_CODE, prompt.user)
        self.assertNotIn("PREVIOUS WORKING SOLUTION", prompt.user)

    def test_failed_tests_and_recent_failures_are_listed(self) -> None:
        store = _store()
        for i in range(3):
            store.record_attempt(
                code=f"attempt {i}",
                success=False,
                language="python",
                problem_statement="Two Sum",
                failed_test_cases=[str(i)],
                error_message=f"error {i}",
            )

        context = build_debug_context(
            store,
            current_code="attempt 3\nmore",
            problem_statement="Two Sum",
            screenshot_analysis="Test case 4 failed: expected 9, got 7",
        )
        prompt = build_debug_prompt("Two Sum", "python", context).user

        self.assertIn("Test Case 4:", prompt)
        self.assertIn("Expected: 9", prompt)
        self.assertIn("Actual: 7", prompt)
        self.assertIn("error 2", prompt)
        self.assertIn("error 1", prompt)
        self.assertNotIn("error 0", prompt)
        self.assertIn("Code length changed from 1 to 2 lines", prompt)

    def test_context_parts_appear_in_fixed_order(self) -> None:
        store = _store()
        store.record_attempt(
            code=WORKING_CODE,
            success=True,
            language="python",
            problem_statement="Two Sum",
        )
        store.record_attempt(
            code="return []",
            success=False,
            language="python",
            problem_statement="Two Sum",
            failed_test_cases=["1"],
            error_message="wrong answer",
        )

        context = build_debug_context(
            store,
            current_code="return [0, 0]",
            problem_statement="Two Sum",
            screenshot_analysis="Test case 2 failed: expected [0,1], got [0,0]",
        )
        prompt = build_debug_prompt("Two Sum", "python", context).user

        markers = [
            "CURRENT CODE:",
            "PREVIOUS WORKING SOLUTION",
            "FAILED TEST CASES:",
            "RECENT FAILED ATTEMPTS:",
        ]
        positions = [prompt.index(marker) for marker in markers]
        self.assertEqual(positions, sorted(positions))

    def test_response_schema_lists_every_section_in_order(self) -> None:
        context = build_debug_context(_store(), current_code="", problem_statement="p")
        prompt = build_debug_prompt("p", "python", context).user

        positions = [prompt.index(f"### {title}") for title in DEBUG_SECTIONS]
        self.assertEqual(positions, sorted(positions))
        self.assertIn("see the attached screenshots", prompt)


if __name__ == "__main__":
    unittest.main()
