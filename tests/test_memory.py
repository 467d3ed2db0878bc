import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from snapsolve.memory import (
    DebugMemoryStore,
    InMemoryStorage,
    JsonFileStorage,
    PreviousSolution,
)


class _FailingStorage:
    def read_all(self):
        raise OSError("disk gone")

    def write_all(self, data: bytes) -> None:
        raise OSError("read-only")


def _record(store: DebugMemoryStore, problem: str, code: str, success: bool = False) -> PreviousSolution:
    return store.record_attempt(
        code=code,
        success=success,
        language="python",
        problem_statement=problem,
    )


class DebugMemoryStoreTests(unittest.TestCase):
    def test_keeps_newest_ten(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        for i in range(12):
            _record(store, "Two Sum", f"attempt {i}")

        codes = [entry.code for entry in store.entries()]
        self.assertEqual(len(codes), 10)
        self.assertEqual(codes[0], "attempt 11")
        self.assertEqual(codes[-1], "attempt 2")

    def test_ids_are_unique_even_within_one_millisecond(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        ids = {_record(store, "p", str(i)).id for i in range(5)}
        self.assertEqual(len(ids), 5)

    def test_problem_statements_match_exactly(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        _record(store, "Two Sum", "a")
        _record(store, "Two Sum II", "b")
        _record(store, "two sum", "c")

        self.assertEqual([e.code for e in store.recent_for("Two Sum")], ["a"])
        self.assertEqual(store.recent_for("Two Sum", limit=0), [])

    def test_recent_for_defaults_to_five(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        for i in range(8):
            _record(store, "p", str(i))
        self.assertEqual([e.code for e in store.recent_for("p")], ["7", "6", "5", "4", "3"])

    def test_last_working_skips_failures(self) -> None:
        store = DebugMemoryStore(InMemoryStorage())
        _record(store, "p", "good", success=True)
        _record(store, "p", "bad")
        self.assertEqual(store.last_working_for("p").code, "good")
        self.assertIsNone(store.last_working_for("other"))

    def test_persists_and_reloads(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "previous_solutions.json"
            store = DebugMemoryStore(JsonFileStorage(path))
            saved = store.record_attempt(
                code="print(1)",
                success=False,
                language="python",
                problem_statement="Two Sum",
                failed_test_cases=["3"],
                error_message="runtime error",
            )

            reloaded = DebugMemoryStore(JsonFileStorage(path))
            reloaded.load()

            self.assertEqual(reloaded.entries(), [saved])
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(payload[0]["problem_statement"], "Two Sum")

    def test_reload_preserves_recent_order(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "previous_solutions.json"
            store = DebugMemoryStore(JsonFileStorage(path))
            for code in ("first", "second", "third"):
                _record(store, "Two Sum", code)
            _record(store, "Other", "unrelated")
            _record(store, "Two Sum", "fourth", success=True)

            reloaded = DebugMemoryStore(JsonFileStorage(path))
            reloaded.load()

            expected = [e.code for e in store.recent_for("Two Sum")]
            self.assertEqual(expected, ["fourth", "third", "second", "first"])
            self.assertEqual([e.code for e in reloaded.recent_for("Two Sum")], expected)
            self.assertEqual(reloaded.entries(), store.entries())
            self.assertEqual(reloaded.last_working_for("Two Sum").code, "fourth")

    def test_corrupted_storage_loads_empty(self) -> None:
        store = DebugMemoryStore(InMemoryStorage(b"{not json"))
        store.load()
        self.assertEqual(len(store), 0)

    def test_malformed_entries_are_skipped(self) -> None:
        good = PreviousSolution(
            id="1",
            code="x",
            success=True,
            timestamp=1.0,
            language="python",
            problem_statement="p",
        ).to_dict()
        data = json.dumps([good, {"code": "missing fields"}, "junk"]).encode("utf-8")

        store = DebugMemoryStore(InMemoryStorage(data))
        store.load()
        self.assertEqual([e.id for e in store.entries()], ["1"])

    def test_storage_failures_never_raise(self) -> None:
        store = DebugMemoryStore(_FailingStorage())
        store.load()
        entry = _record(store, "p", "code")
        self.assertEqual(store.entries(), [entry])

    def test_clear(self) -> None:
        storage = InMemoryStorage()
        store = DebugMemoryStore(storage)
        _record(store, "p", "code")
        store.clear()
        self.assertEqual(len(store), 0)
        self.assertEqual(json.loads(storage.read_all()), [])


if __name__ == "__main__":
    unittest.main()
