"""Command-line interface for screenshot-driven solving and debugging."""

from __future__ import annotations

import argparse
import base64
import dataclasses
import json
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import Settings, load_settings, sanitize_model
from .memory import DebugMemoryStore, JsonFileStorage
from .parsing import ProblemInfo
from .processing import DebugResult, Outcome, ProcessingSession, SolutionResult


def _read_images(paths: list[str]) -> list[str]:
    images = []
    for raw in paths:
        path = Path(raw)
        if not path.is_file():
            raise SystemExit(f"Screenshot not found: {path}")
        images.append(base64.b64encode(path.read_bytes()).decode("ascii"))
    return images


def _read_problem(path: str) -> ProblemInfo:
    problem_path = Path(path)
    if not problem_path.is_file():
        raise SystemExit(f"Problem file not found: {problem_path}")
    payload = json.loads(problem_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise SystemExit(f"Problem file must contain a JSON object: {problem_path}")
    return ProblemInfo.from_dict(payload)


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    overrides: dict[str, Any] = {}

    if args.model:
        model = sanitize_model(args.model, settings.api_provider)
        overrides.update(extraction_model=model, solution_model=model, debugging_model=model)
    if args.language:
        overrides["language"] = args.language
    if args.max_attempts is not None:
        overrides["max_attempts"] = max(1, args.max_attempts)
    if args.memory_path:
        overrides["memory_path"] = Path(args.memory_path).expanduser()

    return dataclasses.replace(settings, **overrides) if overrides else settings


def _open_memory(args: argparse.Namespace) -> DebugMemoryStore:
    settings = _settings_from_args(args)
    store = DebugMemoryStore(JsonFileStorage(settings.memory_path))
    store.load()
    return store


def _outcome_payload(outcome: Outcome) -> dict[str, Any]:
    data = outcome.data
    if isinstance(data, ProblemInfo):
        data = data.raw
    elif isinstance(data, DebugResult):
        data = {
            "code": data.code,
            "debug_analysis": data.analysis,
            "thoughts": data.thoughts,
            "failed_test_cases": [dataclasses.asdict(f) for f in data.failed_test_cases],
        }
    elif dataclasses.is_dataclass(data):
        data = dataclasses.asdict(data)

    return {
        "status": outcome.status.value,
        "data": data,
        "error": outcome.error,
        "error_kind": outcome.error_kind.value if outcome.error_kind else None,
        "detail": outcome.detail,
        "attempts": [dataclasses.asdict(a) for a in outcome.attempts],
    }


def _print_solution(result: SolutionResult) -> None:
    print(result.code)
    print()
    print("Thoughts:")
    for thought in result.thoughts:
        print(f"- {thought}")
    print(f"Time complexity: {result.time_complexity}")
    print(f"Space complexity: {result.space_complexity}")


def _report(outcome: Outcome, args: argparse.Namespace) -> None:
    if args.json:
        print(json.dumps(_outcome_payload(outcome), indent=2, default=str))
    elif outcome.ok:
        data = outcome.data
        if isinstance(data, ProblemInfo):
            print(json.dumps(data.raw, indent=2))
        elif isinstance(data, DebugResult):
            print(data.analysis)
        else:
            _print_solution(data)

    if not outcome.ok:
        message = outcome.error or "Request failed"
        if outcome.detail:
            message = f"{message}\n({outcome.detail})"
        raise SystemExit(message)


def _run(session: ProcessingSession, future: Future[Outcome]) -> Outcome:
    try:
        return future.result()
    except KeyboardInterrupt:
        session.cancel_all()
        return future.result()
    finally:
        session.shutdown()


def cmd_extract(args: argparse.Namespace) -> None:
    images = _read_images(args.images)
    session = ProcessingSession(_settings_from_args(args))
    future = session.process_extraction(images)
    outcome = _run(session, future)

    if outcome.ok and args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(outcome.data.raw, indent=2), encoding="utf-8")
        print(f"Saved problem description: {out}")
        return
    _report(outcome, args)


def cmd_solve(args: argparse.Namespace) -> None:
    if not args.problem and not args.images:
        raise SystemExit("Provide screenshots or --problem")
    if args.problem and args.images:
        raise SystemExit("Provide either screenshots or --problem, not both")

    problem = _read_problem(args.problem) if args.problem else None
    images = _read_images(args.images)

    session = ProcessingSession(_settings_from_args(args))
    if problem is not None:
        future = session.process_solution(problem)
    else:
        future = session.process_screenshots(images)
    _report(_run(session, future), args)


def cmd_direct(args: argparse.Namespace) -> None:
    images = _read_images(args.images)
    session = ProcessingSession(_settings_from_args(args))
    future = session.process_direct(images)
    _report(_run(session, future), args)


def cmd_debug(args: argparse.Namespace) -> None:
    images = _read_images(args.images)
    problem = _read_problem(args.problem)
    code = Path(args.code).read_text(encoding="utf-8") if args.code else ""
    analysis = args.analysis or ""
    if args.analysis_file:
        analysis = Path(args.analysis_file).read_text(encoding="utf-8")

    session = ProcessingSession(_settings_from_args(args))
    session.problem_info = problem
    session.current_code = code
    future = session.process_debug_screenshots(
        images,
        screenshot_analysis=analysis,
    )
    _report(_run(session, future), args)


def cmd_history_list(args: argparse.Namespace) -> None:
    store = _open_memory(args)
    if args.problem:
        entries = store.recent_for(_read_problem(args.problem).problem_statement, limit=args.limit)
    else:
        entries = store.entries()[: args.limit]

    if args.json:
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return

    if not entries:
        print("No stored attempts.")
        return
    for entry in entries:
        status = "working" if entry.success else "failing"
        statement = entry.problem_statement.splitlines()[0][:60] if entry.problem_statement else ""
        failed = ",".join(entry.failed_test_cases) or "-"
        print(f"{entry.id}  {status:<7}  {entry.language:<10}  failed={failed}  {statement}")


def cmd_history_record(args: argparse.Namespace) -> None:
    session = ProcessingSession(_settings_from_args(args))
    try:
        entry = session.solver.record_verdict(
            _read_problem(args.problem),
            Path(args.code).read_text(encoding="utf-8"),
            success=args.success,
            language=session.settings.language,
            failed_test_cases=args.failed_test_cases,
            error_message=args.error_message,
        )
    finally:
        session.shutdown()
    print(f"Recorded attempt {entry.id} ({'working' if entry.success else 'failing'})")


def cmd_history_clear(args: argparse.Namespace) -> None:
    store = _open_memory(args)
    count = len(store)
    store.clear()
    print(f"Cleared {count} stored attempts.")


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--model",
        default=None,
        help="Model for every task; falls back to the provider default when unknown.",
    )
    parser.add_argument("--language", default=None, help="Solution language (default: python).")
    parser.add_argument("--max-attempts", type=int, default=None)
    parser.add_argument("--memory-path", default=None, help="Where stored attempts are kept.")
    parser.add_argument("--json", action="store_true", help="Print machine-readable output.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solve and debug coding problems from screenshots")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract a structured problem description")
    extract.add_argument("images", nargs="+", help="Problem screenshots")
    extract.add_argument("--output", default=None, help="Write the problem JSON here")
    _add_common_args(extract)
    extract.set_defaults(func=cmd_extract)

    solve = sub.add_parser("solve", help="Extract the problem and generate a solution")
    solve.add_argument("images", nargs="*", help="Problem screenshots")
    solve.add_argument("--problem", default=None, help="Previously extracted problem JSON")
    _add_common_args(solve)
    solve.set_defaults(func=cmd_solve)

    direct = sub.add_parser("direct", help="Go straight from screenshots to code")
    direct.add_argument("images", nargs="+")
    _add_common_args(direct)
    direct.set_defaults(func=cmd_direct)

    debug = sub.add_parser("debug", help="Debug a solution using result screenshots")
    debug.add_argument("images", nargs="+", help="Screenshots of failing results")
    debug.add_argument("--problem", required=True, help="Extracted problem JSON")
    debug.add_argument("--code", default=None, help="File with the current solution")
    debug.add_argument("--analysis", default=None, help="Text describing failing test cases")
    debug.add_argument("--analysis-file", default=None)
    _add_common_args(debug)
    debug.set_defaults(func=cmd_debug)

    history = sub.add_parser("history", help="Inspect or manage stored attempts")
    history_sub = history.add_subparsers(dest="history_command", required=True)

    hlist = history_sub.add_parser("list", help="Show stored attempts, newest first")
    hlist.add_argument("--problem", default=None, help="Only attempts for this problem JSON")
    hlist.add_argument("--limit", type=int, default=10)
    _add_common_args(hlist)
    hlist.set_defaults(func=cmd_history_list)

    hrecord = history_sub.add_parser("record", help="Mark a solution as working or failing")
    hrecord.add_argument("--problem", required=True)
    hrecord.add_argument("--code", required=True)
    verdict = hrecord.add_mutually_exclusive_group(required=True)
    verdict.add_argument("--working", action="store_true", dest="success")
    verdict.add_argument("--failing", action="store_false", dest="success")
    hrecord.add_argument("--failed-test-cases", nargs="*", default=[])
    hrecord.add_argument("--error-message", default=None)
    _add_common_args(hrecord)
    hrecord.set_defaults(func=cmd_history_record)

    hclear = history_sub.add_parser("clear", help="Delete all stored attempts")
    _add_common_args(hclear)
    hclear.set_defaults(func=cmd_history_clear)

    return parser


def main() -> None:
    load_dotenv(override=False)
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
