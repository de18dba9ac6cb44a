"""Tests for master-data seeding."""
import asyncio
import json
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from generation_client import GenerationError
from master_seeder import build_seed_prompt, seed_master_data
from question_bank import QuestionBank
from question_cache import QuestionCache
from question_decoder import stable_question_id
from quiz_models import Difficulty, make_cache_key


def generated(topic, first_id):
    return [
        {
            "id": first_id + i,
            "question": f"{topic} fact {i}?",
            "options": ["W", "X", "Y", "Z"],
            "correctAnswer": "Y",
            "context": "Because Y.",
        }
        for i in range(5)
    ]


class TopicClient:
    """Replies per topic named in the prompt."""

    def __init__(self, replies):
        self.replies = replies
        self.prompts = []

    async def generate(self, prompt, schema=None):
        self.prompts.append(prompt)
        for topic, reply in self.replies.items():
            if f'"{topic}"' in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        raise GenerationError("unexpected topic")


async def no_sleep(delay):
    pass


class TestSeedMasterData:
    """Tests for seeding the bundled dataset."""

    def test_generates_missing_and_skips_existing(self):
        async def scenario(data_dir, cache_path):
            bank = QuestionBank(data_dir)
            cache = QuestionCache(cache_path)
            client = TopicClient({
                "Astronomy": generated("Astronomy", 9000),
                "Cold War": GenerationError("quota"),
                "Blockchain": [{"id": 1, "question": "too few"}],
            })
            messages = []
            report = await seed_master_data(
                bank, client, cache,
                targets={"SCIENCE": ["Quantum Physics", "Astronomy"], "HISTORY": ["Cold War"], "TECH": ["Blockchain"]},
                on_progress=messages.append,
                sleep=no_sleep,
            )
            return report, client, messages, await cache.get(make_cache_key("Astronomy", Difficulty.HARD, "en"))

        with tempfile.TemporaryDirectory() as tmpdir:
            data_dir = Path(tmpdir) / "questions"
            data_dir.mkdir()
            (data_dir / "science.json").write_text(json.dumps({
                "Quantum Physics_HARD_en": generated("Quantum Physics", 100),
            }))

            report, client, messages, cached = asyncio.run(scenario(data_dir, Path(tmpdir) / "cache.json"))

            assert report.skipped == ["Quantum Physics"]
            assert report.generated == ["Astronomy"]
            assert report.failed == ["Cold War", "Blockchain"]
            assert len(client.prompts) == 3
            assert messages[-1] == "Seeding complete"

            science = json.loads((data_dir / "science.json").read_text())
            assert set(science) == {"Quantum Physics_HARD_en", "Astronomy_HARD_en"}
            assert science["Astronomy_HARD_en"][0]["correct_option"] == "Y"
            # Model-supplied ids are replaced with ids derived from topic and prompt.
            expected = [stable_question_id("Astronomy", f"Astronomy fact {i}?") for i in range(5)]
            assert [q.id for q in cached] == expected
            assert [q["id"] for q in science["Astronomy_HARD_en"]] == expected

    def test_prompt_names_topic_and_difficulty(self):
        prompt = build_seed_prompt("Stoicism", Difficulty.HARD)
        assert '"Stoicism"' in prompt
        assert "Difficulty: Hard" in prompt
        assert "id," not in prompt
