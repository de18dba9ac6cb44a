"""Tests for the persistent question cache."""
import asyncio
import json
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from question_cache import QuestionCache
from quiz_models import QuestionRecord


def make_records(first_id: int, count: int = 5, padding: str = "") -> list[QuestionRecord]:
    return [
        QuestionRecord(
            id=first_id + i,
            prompt=f"Question {first_id + i}?{padding}",
            options=["A", "B", "C", "D"],
            correct_option="C",
            explanation="Because C.",
        )
        for i in range(count)
    ]


class TestRoundTrip:
    """Tests for put/get."""

    def test_put_then_get_returns_equivalent_records(self):
        async def scenario(path):
            cache = QuestionCache(path)
            await cache.open()
            records = make_records(100)
            await cache.put("quantum physics_medium_en", records)
            return records, await cache.get("quantum physics_medium_en")

        with tempfile.TemporaryDirectory() as tmpdir:
            records, loaded = asyncio.run(scenario(Path(tmpdir) / "cache.json"))
            assert loaded == records

    def test_survives_reopen(self):
        async def scenario(path):
            first = QuestionCache(path)
            await first.put("k", make_records(1))
            await first.close()

            second = QuestionCache(path)
            await second.open()
            return await second.get("k")

        with tempfile.TemporaryDirectory() as tmpdir:
            loaded = asyncio.run(scenario(Path(tmpdir) / "cache.json"))
            assert [q.id for q in loaded] == [1, 2, 3, 4, 5]

    def test_same_key_last_write_wins(self):
        async def scenario(path):
            cache = QuestionCache(path)
            await cache.put("k", make_records(1))
            await cache.put("k", make_records(50, count=2))
            return await cache.get("k")

        with tempfile.TemporaryDirectory() as tmpdir:
            loaded = asyncio.run(scenario(Path(tmpdir) / "cache.json"))
            assert [q.id for q in loaded] == [50, 51]

    def test_miss_returns_none(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = QuestionCache(Path(tmpdir) / "cache.json")
            assert asyncio.run(cache.get("absent")) is None

    def test_malformed_entry_is_a_miss(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "cache.json"
            path.write_text(json.dumps({
                "bad": [{"id": 1, "prompt": "Q", "options": ["A", "B"], "correct_option": "A"}],
            }))
            assert asyncio.run(QuestionCache(path).get("bad")) is None

    def test_corrupt_file_opens_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "cache.json"
            path.write_text("{truncated")
            assert asyncio.run(QuestionCache(path).get("k")) is None


class TestQuota:
    """Tests for quota-exceeded recovery."""

    def test_clears_and_retries_when_full(self):
        async def scenario(path):
            cache = QuestionCache(path, max_bytes=1500)
            await cache.put("old", make_records(1))
            await cache.put("new", make_records(100))
            return await cache.get("old"), await cache.get("new")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "cache.json"
            old, new = asyncio.run(scenario(path))

            assert old is None
            assert [q.id for q in new] == [100, 101, 102, 103, 104]
            assert list(json.loads(path.read_text())) == ["new"]

    def test_drops_write_that_never_fits(self):
        async def scenario(path):
            cache = QuestionCache(path, max_bytes=1500)
            await cache.put("small", make_records(1, count=1))
            await cache.put("huge", make_records(100, padding="x" * 1000))
            return await cache.get("small"), await cache.get("huge")

        with tempfile.TemporaryDirectory() as tmpdir:
            small, huge = asyncio.run(scenario(Path(tmpdir) / "cache.json"))
            assert small is None
            assert huge is None

    def test_write_failure_is_not_raised(self):
        async def scenario(path):
            cache = QuestionCache(path)
            await cache.put("k", make_records(1))
            return await cache.get("k")

        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "not-a-dir"
            blocker.write_text("")
            loaded = asyncio.run(scenario(blocker / "cache.json"))
            # Still served from memory for this process.
            assert [q.id for q in loaded] == [1, 2, 3, 4, 5]


class TestClear:
    """Tests for clearing the cache."""

    def test_clear_removes_everything(self):
        async def scenario(path):
            cache = QuestionCache(path)
            await cache.put("k", make_records(1))
            await cache.clear()
            return await cache.get("k")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "cache.json"
            assert asyncio.run(scenario(path)) is None
            assert not path.exists()
