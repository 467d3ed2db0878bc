"""Prompt templates for extraction, solution and debugging calls."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .analysis import TestCaseFailure, analyze_test_case_failures, summarize_recent_changes
from .memory import DebugMemoryStore, PreviousSolution
from .parsing import ProblemInfo


@dataclass(frozen=True)
class PromptBundle:
    system: str
    user: str


@dataclass(frozen=True)
class DebugContext:
    current_code: str
    failed_test_cases: list[TestCaseFailure] = field(default_factory=list)
    previous_solutions: list[PreviousSolution] = field(default_factory=list)
    last_working: PreviousSolution | None = None
    recent_changes: list[str] = field(default_factory=list)
    screenshot_analysis: str = ""


EXTRACTION_SYSTEM_PROMPT = "You are a coding challenge interpreter."

SOLUTION_SYSTEM_PROMPT = (
    "You are an expert coding interview assistant. "
    "Provide clear, optimal solutions with concise explanations."
)

DEBUG_SYSTEM_PROMPT = (
    "You are a coding interview assistant helping debug and improve solutions. "
    "Analyze the screenshots, which show error messages, incorrect outputs or test cases, "
    "and provide detailed debugging help."
)

PROBLEM_SCHEMA: dict[str, Any] = {
    "problem_title": "string",
    "description": "string",
    "input_format": "string",
    "expected_output": "string",
    "constraints": "string",
    "examples": [{"input": "string", "output": "string", "explanation": "string"}],
    "hidden_details": "string",
    "code_template": {
        "language": "string",
        "signature": "string",
        "return_type": "string",
        "full_code_stub": "string",
        "description": "string",
    },
    "goal": "string",
}

ISSUES_SECTION = "Issues Identified"
COMPARISON_SECTION = "Code Comparison Analysis"
TEST_FIXES_SECTION = "Specific Test Case Fixes"
FIX_PLAN_SECTION = "Step-by-Step Fix Plan"
IMPROVED_SOLUTION_SECTION = "Improved Solution"
WHY_SECTION = "Why This Fix Works"

DEBUG_SECTIONS: tuple[str, ...] = (
    ISSUES_SECTION,
    COMPARISON_SECTION,
    TEST_FIXES_SECTION,
    FIX_PLAN_SECTION,
    IMPROVED_SOLUTION_SECTION,
    WHY_SECTION,
)

MAX_RECENT_FAILURES_IN_PROMPT = 2


def build_extraction_prompt(language: str) -> PromptBundle:
    """Ask for the problem as one JSON object, nothing else."""

    schema = json.dumps(PROBLEM_SCHEMA, indent=2)
    user = f"""From these screenshots of a coding problem, extract a JSON object with the following keys. For the code_template, include any surrounding class or function structure visible, not just the function signature:

{schema}

Special notes:
- signature: the function signature only
- return_type: return type of the function
- full_code_stub: the full visible class/function stub
- description: what the function is expected to do
- goal: summarize the problem in one short sentence
- If the stub language is not visible, assume {language}.

Format the output as a single ```json block and nothing else.
"""
    return PromptBundle(system=EXTRACTION_SYSTEM_PROMPT, user=user)


def _format_examples(examples: list[dict[str, Any]]) -> str:
    rendered = []
    for example in examples:
        rendered.append(
            f"Input: {example.get('input', '')}\n"
            f"Output: {example.get('output', '')}\n"
            f"Explanation: {example.get('explanation', '')}"
        )
    return "\n\n".join(rendered)


def build_solution_prompt(problem: ProblemInfo, language: str) -> PromptBundle:
    """Stub-completion prompt with a fixed answer layout for the parser."""

    stub = problem.code_stub or f"(no stub visible; write a complete {language} solution)"
    user = f"""Complete the following function/class stub in {language} to solve the problem described. Do not write a main() function or any includes. Only fill in the body of the provided stub.

Problem:
{problem.problem_statement}

Function/Class Stub:
{stub}

Constraints:
{problem.constraints}

Examples:
{_format_examples(problem.examples)}

Respond in exactly this layout:
1. The completed code in a single ```{language} block.
2. Thoughts: a bullet list of the key insights behind the approach.
3. Time complexity: O(...) - one sentence explaining why.
4. Space complexity: O(...) - one sentence explaining why.
"""
    return PromptBundle(system=SOLUTION_SYSTEM_PROMPT, user=user)


def build_direct_prompt(language: str) -> PromptBundle:
    """Screenshots straight to code, skipping structured extraction."""

    user = f"""Carefully analyze the provided screenshots and output only the most accurate, complete and optimal solution code for the problem shown.

Respond with a single code block in {language}. Do not include any explanation, comments or extra text, just the code.
"""
    return PromptBundle(system=SOLUTION_SYSTEM_PROMPT, user=user)


def build_debug_context(
    store: DebugMemoryStore,
    *,
    current_code: str,
    problem_statement: str,
    screenshot_analysis: str = "",
    synthesize_generic: bool = True,
) -> DebugContext:
    previous = store.recent_for(problem_statement)
    return DebugContext(
        current_code=current_code,
        failed_test_cases=analyze_test_case_failures(
            screenshot_analysis,
            synthesize_generic=synthesize_generic,
        ),
        previous_solutions=previous,
        last_working=store.last_working_for(problem_statement),
        recent_changes=summarize_recent_changes(previous, current_code),
        screenshot_analysis=screenshot_analysis,
    )


def _debug_schema(language: str, has_working: bool) -> str:
    comparison = (
        "- Compare current code with the previous working solution and highlight key differences"
        if has_working
        else "- Analyze the current code structure and logic flow"
    )
    return f"""YOUR RESPONSE MUST FOLLOW THIS EXACT STRUCTURE:

### {ISSUES_SECTION}
- List each specific issue found in the current code

### {COMPARISON_SECTION}
{comparison}

### {TEST_FIXES_SECTION}
- For each failed test case, provide the specific fix needed
- Reference the exact test case numbers and expected vs actual outputs

### {FIX_PLAN_SECTION}
1. Numbered, specific and actionable steps to fix the code

### {IMPROVED_SOLUTION_SECTION}
```{language}
// corrected code here
```

### {WHY_SECTION}
- Explain how the fixes address each failed test case
"""


def build_debug_prompt(
    problem_statement: str,
    language: str,
    context: DebugContext,
) -> PromptBundle:
    """Debug prompt folding in stored attempts and parsed test failures."""

    parts = [
        "I need detailed help debugging my current solution, which has failing test cases.",
        f'PROBLEM: "{problem_statement}"\nLANGUAGE: {language}',
    ]

    if context.current_code:
        parts.append(f"CURRENT CODE:\n```{language}\n{context.current_code}\n```")
    else:
        parts.append("CURRENT CODE: see the attached screenshots.")

    if context.last_working is not None:
        parts.append(
            "PREVIOUS WORKING SOLUTION (for reference):\n"
            f"```{context.last_working.language or language}\n{context.last_working.code}\n```"
        )

    if context.failed_test_cases:
        lines = ["FAILED TEST CASES:"]
        for idx, failure in enumerate(context.failed_test_cases, start=1):
            lines.append(f"{idx}. Test Case {failure.test_case_id}:")
            lines.append(f"   - Expected: {failure.expected}")
            lines.append(f"   - Actual: {failure.actual}")
            lines.append(f"   - Error Type: {failure.category.value}")
            if failure.error_message:
                lines.append(f"   - Error: {failure.error_message}")
        parts.append("\n".join(lines))

    recent_failures = [s for s in context.previous_solutions if not s.success]
    recent_failures = recent_failures[:MAX_RECENT_FAILURES_IN_PROMPT]
    if recent_failures:
        lines = ["RECENT FAILED ATTEMPTS:"]
        for idx, attempt in enumerate(recent_failures, start=1):
            failed = ", ".join(attempt.failed_test_cases) or "Not specified"
            lines.append(f"{idx}. Previous attempt failed with: {attempt.error_message or 'Unknown error'}")
            lines.append(f"   Failed test cases: {failed}")
        parts.append("\n".join(lines))

    if context.recent_changes:
        parts.append("RECENT CHANGES:\n" + "\n".join(f"- {c}" for c in context.recent_changes))

    parts.append(_debug_schema(language, context.last_working is not None))
    parts.append(
        "Focus on the failed test cases and give concrete, actionable debugging advice. "
        "Use markdown code blocks with a language tag for any code."
    )

    return PromptBundle(system=DEBUG_SYSTEM_PROMPT, user="\n\n".join(parts))
