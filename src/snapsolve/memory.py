"""Bounded, persisted history of solution attempts per problem."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10


@dataclass(frozen=True)
class PreviousSolution:
    id: str
    code: str
    success: bool
    timestamp: float
    language: str
    problem_statement: str
    failed_test_cases: tuple[str, ...] = ()
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "success": self.success,
            "timestamp": self.timestamp,
            "language": self.language,
            "problem_statement": self.problem_statement,
            "failed_test_cases": list(self.failed_test_cases),
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PreviousSolution:
        failed = payload.get("failed_test_cases") or []
        error_message = payload.get("error_message")
        return cls(
            id=str(payload["id"]),
            code=str(payload["code"]),
            success=bool(payload["success"]),
            timestamp=float(payload["timestamp"]),
            language=str(payload.get("language") or ""),
            problem_statement=str(payload["problem_statement"]),
            failed_test_cases=tuple(str(x) for x in failed),
            error_message=str(error_message) if error_message is not None else None,
        )


class SolutionStorage(Protocol):
    """Durable blob storage for the serialized history."""

    def read_all(self) -> bytes | None:
        ...

    def write_all(self, data: bytes) -> None:
        ...


class InMemoryStorage:
    def __init__(self, data: bytes | None = None) -> None:
        self.data = data

    def read_all(self) -> bytes | None:
        return self.data

    def write_all(self, data: bytes) -> None:
        self.data = data


class JsonFileStorage:
    """Single JSON file, replaced atomically on every write."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read_all(self) -> bytes | None:
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def write_all(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class DebugMemoryStore:
    """Newest-first list of previous solutions, capped at ``capacity``.

    Problem statements are matched by exact string equality; "Two Sum" and
    "Two Sum II" are different problems.
    """

    def __init__(self, storage: SolutionStorage, *, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.storage = storage
        self.capacity = capacity
        self._entries: list[PreviousSolution] = []
        self._write_lock = threading.Lock()
        self._last_id = 0

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[PreviousSolution]:
        return list(self._entries)

    def load(self) -> None:
        """Replace in-memory state from storage. Never raises."""

        try:
            raw = self.storage.read_all()
        except Exception as exc:
            logger.warning("Failed to read previous solutions from storage: %s", exc)
            raw = None

        entries: list[PreviousSolution] = []
        if raw:
            try:
                payload = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, ValueError) as exc:
                logger.warning("Stored previous solutions are corrupted, starting empty: %s", exc)
                payload = []
            if not isinstance(payload, list):
                logger.warning("Stored previous solutions have unexpected shape, starting empty")
                payload = []

            for item in payload:
                if not isinstance(item, dict):
                    continue
                try:
                    entries.append(PreviousSolution.from_dict(item))
                except (KeyError, TypeError, ValueError):
                    logger.debug("Skipping malformed stored solution: %r", item)

        with self._write_lock:
            self._entries = entries[: self.capacity]
        logger.debug("Loaded %d previous solutions", len(self._entries))

    def record(self, solution: PreviousSolution) -> None:
        with self._write_lock:
            updated = [solution, *self._entries][: self.capacity]
            # Readers snapshot the list reference, so swap instead of mutating.
            self._entries = updated
            self._persist(updated)

    def record_attempt(
        self,
        *,
        code: str,
        success: bool,
        language: str,
        problem_statement: str,
        failed_test_cases: tuple[str, ...] | list[str] = (),
        error_message: str | None = None,
    ) -> PreviousSolution:
        timestamp = time.time()
        solution = PreviousSolution(
            id=self._next_id(timestamp),
            code=code,
            success=success,
            timestamp=timestamp,
            language=language,
            problem_statement=problem_statement,
            failed_test_cases=tuple(failed_test_cases),
            error_message=error_message,
        )
        self.record(solution)
        return solution

    def recent_for(self, problem_statement: str, limit: int = 5) -> list[PreviousSolution]:
        if limit <= 0:
            return []
        snapshot = self._entries
        return [s for s in snapshot if s.problem_statement == problem_statement][:limit]

    def last_working_for(self, problem_statement: str) -> PreviousSolution | None:
        for solution in self._entries:
            if solution.problem_statement == problem_statement and solution.success:
                return solution
        return None

    def clear(self) -> None:
        with self._write_lock:
            self._entries = []
            self._persist([])

    def _next_id(self, timestamp: float) -> str:
        with self._write_lock:
            candidate = int(timestamp * 1000)
            if candidate <= self._last_id:
                candidate = self._last_id + 1
            self._last_id = candidate
        return str(candidate)

    def _persist(self, entries: list[PreviousSolution]) -> None:
        data = json.dumps([s.to_dict() for s in entries], indent=2).encode("utf-8")
        try:
            self.storage.write_all(data)
        except Exception as exc:
            logger.warning("Failed to save previous solutions to storage: %s", exc)
