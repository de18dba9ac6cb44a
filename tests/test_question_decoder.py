"""Tests for validated question decoding."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from question_decoder import (
    GENERATED_ID_FLOOR,
    DecodeError,
    decode_question,
    decode_question_list,
    decode_topic_map,
    extract_json,
    parse_json_text,
    stable_question_id,
)


def raw_question(qid=1, prompt="Which planet is red?", options=None, correct="Mars", **extra):
    data = {
        "id": qid,
        "prompt": prompt,
        "options": options or ["Mars", "Venus", "Jupiter", "Saturn"],
        "correct_option": correct,
    }
    data.update(extra)
    return data


class TestDecodeQuestion:
    """Tests for single-record validation."""

    def test_accepts_valid_record(self):
        q = decode_question(raw_question(explanation="Iron oxide."))
        assert q.id == 1
        assert q.correct_option == "Mars"
        assert q.explanation == "Iron oxide."

    def test_accepts_generator_key_names(self):
        q = decode_question({
            "id": 7,
            "question": "2 + 2?",
            "options": ["3", "4", "5", "6"],
            "correctAnswer": "4",
            "context": "Arithmetic.",
        })
        assert q.prompt == "2 + 2?"
        assert q.correct_option == "4"
        assert q.explanation == "Arithmetic."

    def test_rejects_correct_option_not_in_options(self):
        with pytest.raises(DecodeError):
            decode_question(raw_question(correct="Pluto"))

    def test_rejects_wrong_option_count(self):
        with pytest.raises(DecodeError):
            decode_question(raw_question(options=["Mars", "Venus", "Jupiter"]))

    def test_rejects_duplicate_options(self):
        with pytest.raises(DecodeError):
            decode_question(raw_question(options=["Mars", "Mars", "Venus", "Jupiter"]))

    def test_rejects_blank_prompt(self):
        with pytest.raises(DecodeError):
            decode_question(raw_question(prompt="   "))

    def test_rejects_non_object(self):
        with pytest.raises(DecodeError):
            decode_question("not a question")

    def test_missing_id_gets_stable_generated_id(self):
        data = raw_question()
        del data["id"]

        first = decode_question(data, "Astronomy")
        second = decode_question(data, "Astronomy")

        assert first.id == second.id
        assert first.id >= GENERATED_ID_FLOOR
        assert first.id == stable_question_id("Astronomy", "Which planet is red?")

    def test_derive_id_ignores_supplied_id(self):
        q = decode_question(raw_question(3), "Astronomy", derive_id=True)
        assert q.id == stable_question_id("Astronomy", "Which planet is red?")


class TestDecodeQuestionList:
    """Tests for list decoding."""

    def test_drops_invalid_and_duplicate_records(self):
        raw = [
            raw_question(1),
            raw_question(2, correct="Pluto"),
            raw_question(1, prompt="Duplicate id"),
            raw_question(3, prompt="Another"),
        ]
        result = decode_question_list(raw)
        assert result.ok
        assert [q.id for q in result.questions] == [1, 3]

    def test_below_minimum_is_a_failure(self):
        result = decode_question_list([raw_question(1), raw_question(2)], minimum=5)
        assert not result.ok
        assert len(result.questions) == 2
        assert "need 5" in result.error

    def test_non_list_is_a_failure(self):
        result = decode_question_list({"questions": []})
        assert not result.ok
        assert result.questions == []


class TestDecodeTopicMap:
    """Tests for batched generation replies."""

    def test_decodes_each_requested_topic(self):
        raw = {
            "Astronomy": [raw_question(i, prompt=f"Q{i}") for i in range(1, 6)],
            "Botany": [raw_question(10)],
        }
        results = decode_topic_map(raw, ["Astronomy", "Botany", "Geology"], minimum=5)

        assert results["Astronomy"].ok
        assert not results["Botany"].ok
        assert results["Geology"].error == "topic missing from response"

    def test_model_ids_are_replaced_per_topic(self):
        raw = {
            "Astronomy": [raw_question(i, prompt=f"Star {i}") for i in range(1, 6)],
            "Botany": [raw_question(i, prompt=f"Leaf {i}") for i in range(1, 6)],
        }
        results = decode_topic_map(raw, ["Astronomy", "Botany"], minimum=5)

        astronomy = {q.id for q in results["Astronomy"].questions}
        botany = {q.id for q in results["Botany"].questions}
        assert len(astronomy) == len(botany) == 5
        assert not astronomy & botany
        assert min(astronomy | botany) >= GENERATED_ID_FLOOR

    def test_non_object_fails_every_topic(self):
        results = decode_topic_map([], ["A", "B"])
        assert not results["A"].ok and not results["B"].ok


class TestJsonText:
    """Tests for pulling JSON out of model replies."""

    def test_strips_code_fences(self):
        text = '```json\n{"a": [1, 2]}\n```'
        assert extract_json(text) == '{"a": [1, 2]}'
        assert parse_json_text(text) == {"a": [1, 2]}

    def test_parses_arrays(self):
        assert parse_json_text("Here you go: [1, 2, 3]") == [1, 2, 3]

    def test_empty_text_raises(self):
        with pytest.raises(ValueError):
            parse_json_text("")

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_json_text("{not json}")
