"""Parsing utilities for model outputs.

Free-text extractors (code, thoughts, complexity, debug sections) are
best-effort: each returns a documented default instead of raising, and they
run independently so one miss never hides the others. Structured extraction
(:func:`parse_problem_json`) is strict and raises ``ResponseParseError``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from .errors import ResponseParseError

CODE_BLOCK_RE = re.compile(r"```[ \t]*([\w+#.-]*)[ \t]*\n?(.*?)```", flags=re.DOTALL)
JSON_FENCE_RE = re.compile(r"```(?:json)?", flags=re.IGNORECASE)
CODE_HINT_RE = re.compile(r"\bdef |\bclass |\bfunction ")
_THOUGHT_HEADERS = r"(?:Thoughts|Key Insights|Insights|Reasoning|Approach)"
THOUGHTS_RE = re.compile(
    rf"(?:^#+[ \t]*{_THOUGHT_HEADERS}[^\n]*|{_THOUGHT_HEADERS}\**[ \t]*:\**)"
    r"([\s\S]*?)(?=Time complexity|Space complexity|```|\Z)",
    flags=re.IGNORECASE | re.MULTILINE,
)
BULLET_RE = re.compile(r"^[ \t]*(?:[-*•]|\d+[.)])[ \t]+(.+)$", flags=re.MULTILINE)
TIME_COMPLEXITY_RE = re.compile(r"Time complexity\**[ \t]*:?[ \t]*([^\n]+)", flags=re.IGNORECASE)
SPACE_COMPLEXITY_RE = re.compile(r"Space complexity\**[ \t]*:?[ \t]*([^\n]+)", flags=re.IGNORECASE)
BIG_O_RE = re.compile(r"O\([^)]+\)", flags=re.IGNORECASE)
SECTION_RE = re.compile(r"^#{1,4}[ \t]*(.+?)[ \t]*#*[ \t]*$", flags=re.MULTILINE)

DEFAULT_THOUGHTS = ("Solution approach based on efficiency and readability",)
DEFAULT_DEBUG_THOUGHTS = ("Debug analysis based on your screenshots",)
DEFAULT_TIME_COMPLEXITY = (
    "O(n) - Linear time complexity because each element is processed a constant number of times."
)
DEFAULT_SPACE_COMPLEXITY = (
    "O(n) - Linear space complexity because auxiliary storage grows with the input in the worst case."
)
DEBUG_CODE_PLACEHOLDER = "// Debug mode - see analysis below"
MAX_DEBUG_THOUGHTS = 5

_HEADING_FIXUPS = (
    (re.compile(r"issues identified|problems found|bugs found", re.IGNORECASE), "## Issues Identified"),
    (re.compile(r"code improvements|suggested changes", re.IGNORECASE), "## Code Improvements"),
    (re.compile(r"optimizations|performance improvements", re.IGNORECASE), "## Optimizations"),
    (re.compile(r"explanation|detailed analysis", re.IGNORECASE), "## Explanation"),
)


@dataclass(frozen=True)
class ProblemInfo:
    """Structured problem description returned by the extraction call."""

    problem_title: str = ""
    description: str = ""
    input_format: str = ""
    expected_output: str = ""
    constraints: str = ""
    examples: list[dict[str, Any]] = field(default_factory=list)
    hidden_details: str = ""
    code_template: dict[str, Any] = field(default_factory=dict)
    goal: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def problem_statement(self) -> str:
        explicit = self.raw.get("problem_statement")
        if isinstance(explicit, str) and explicit.strip():
            return explicit.strip()
        return self.description or self.problem_title or self.goal

    @property
    def code_stub(self) -> str:
        stub = self.code_template.get("full_code_stub") or self.code_template.get("signature")
        return str(stub or "")

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ProblemInfo:
        def text(key: str) -> str:
            value = payload.get(key)
            if value is None:
                return ""
            if isinstance(value, str):
                return value
            return json.dumps(value)

        examples = payload.get("examples")
        template = payload.get("code_template")
        return cls(
            problem_title=text("problem_title"),
            description=text("description") or text("problem_statement"),
            input_format=text("input_format"),
            expected_output=text("expected_output"),
            constraints=text("constraints"),
            examples=[e for e in examples if isinstance(e, dict)] if isinstance(examples, list) else [],
            hidden_details=text("hidden_details"),
            code_template=template if isinstance(template, dict) else {},
            goal=text("goal"),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class SolutionParse:
    code: str
    thoughts: list[str]
    time_complexity: str
    space_complexity: str


@dataclass(frozen=True)
class DebugParse:
    code: str
    analysis: str
    thoughts: list[str]
    sections: dict[str, str]


def parse_problem_json(text: str) -> ProblemInfo:
    """Decode the extraction answer; anything but a JSON object is an error."""

    cleaned = JSON_FENCE_RE.sub("", text or "").strip()
    payload: Any = None
    try:
        payload = json.loads(cleaned)
    except ValueError:
        # Tolerate chatter around the object, but nothing else.
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start != -1 and end > start:
            try:
                payload = json.loads(cleaned[start : end + 1])
            except ValueError:
                payload = None

    if not isinstance(payload, dict):
        raise ResponseParseError("Model response did not contain a JSON problem description")

    info = ProblemInfo.from_dict(payload)
    if not info.problem_statement:
        raise ResponseParseError("Extracted problem description is empty")
    return info


def extract_code_blocks(text: str) -> list[str]:
    """Return the bodies of all fenced code blocks."""

    return [body.strip() for _, body in CODE_BLOCK_RE.findall(text or "") if body.strip()]


def extract_code(text: str) -> str:
    blocks = extract_code_blocks(text)
    if blocks:
        return blocks[0]

    if not text or not CODE_HINT_RE.search(text):
        return ""

    # No fence: treat the answer as code minus obvious prose lines.
    kept = [
        line
        for line in text.split("\n")
        if not line.lstrip().startswith("**")
        and "complexity" not in line.lower()
        and "thought" not in line.lower()
    ]
    return "\n".join(kept).strip()


def _bullets(text: str) -> list[str]:
    return [item.strip() for item in BULLET_RE.findall(text) if item.strip()]


def extract_thoughts(text: str) -> list[str]:
    match = THOUGHTS_RE.search(text or "")
    if match:
        section = match.group(1)
        thoughts = _bullets(section)
        if not thoughts:
            thoughts = [line.strip() for line in section.split("\n") if line.strip()]
        if thoughts:
            return thoughts
    return list(DEFAULT_THOUGHTS)


def _normalize_complexity(value: str) -> str:
    value = value.replace("**", "").strip()
    notation = BIG_O_RE.search(value)
    if notation is None:
        return f"O(n) - {value}"
    if "-" in value.replace(notation.group(0), "", 1) or "because" in value:
        return value

    rest = value.replace(notation.group(0), "", 1).strip(" :;,.")
    if not rest:
        return notation.group(0)
    return f"{notation.group(0)} - {rest}"


def extract_complexity(text: str) -> tuple[str, str]:
    time_value = DEFAULT_TIME_COMPLEXITY
    space_value = DEFAULT_SPACE_COMPLEXITY

    time_match = TIME_COMPLEXITY_RE.search(text or "")
    if time_match and time_match.group(1).strip():
        time_value = _normalize_complexity(time_match.group(1))

    space_match = SPACE_COMPLEXITY_RE.search(text or "")
    if space_match and space_match.group(1).strip():
        space_value = _normalize_complexity(space_match.group(1))

    return time_value, space_value


def parse_solution_response(text: str) -> SolutionParse:
    time_value, space_value = extract_complexity(text)
    return SolutionParse(
        code=extract_code(text),
        thoughts=extract_thoughts(text),
        time_complexity=time_value,
        space_complexity=space_value,
    )


def _fenced_spans(text: str) -> list[tuple[int, int]]:
    return [m.span() for m in CODE_BLOCK_RE.finditer(text)]


def _inside(pos: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= pos < end for start, end in spans)


def split_sections(text: str) -> dict[str, str]:
    """Map markdown heading titles to the text under them."""

    text = text or ""
    fences = _fenced_spans(text)
    sections: dict[str, str] = {}
    matches = [m for m in SECTION_RE.finditer(text) if not _inside(m.start(), fences)]
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        sections[match.group(1).strip()] = text[match.end() : end].strip()
    return sections


def normalize_debug_headings(text: str) -> str:
    """Promote known section names to headings when the model skipped them."""

    if "# " in CODE_BLOCK_RE.sub("", text):
        return text
    for pattern, heading in _HEADING_FIXUPS:
        text = pattern.sub(heading, text, count=1)
    return text


def parse_debug_response(text: str, improved_section: str = "Improved Solution") -> DebugParse:
    analysis = normalize_debug_headings(text or "")
    sections = split_sections(analysis)

    code = ""
    for title, body in sections.items():
        if title.lower() == improved_section.lower():
            blocks = extract_code_blocks(body)
            if blocks:
                code = blocks[0]
            break
    if not code:
        blocks = extract_code_blocks(analysis)
        code = blocks[0] if blocks else DEBUG_CODE_PLACEHOLDER

    thoughts = _bullets(analysis)[:MAX_DEBUG_THOUGHTS] or list(DEFAULT_DEBUG_THOUGHTS)
    return DebugParse(code=code, analysis=analysis, thoughts=thoughts, sections=sections)
