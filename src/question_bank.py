"""
Bundled question dataset.

One JSON file per category under trivia_data/questions/, each mapping
"<Stable Id>_<DIFFICULTY>_<lang>" to a list of question records. Files are
loaded lazily, one category at a time, and kept for the life of the bank.
"""
import json
import logging
from pathlib import Path
from typing import Optional

import config
from json_store import write_json_locked
from question_decoder import decode_question_list
from quiz_models import Difficulty, QuestionRecord, make_dataset_key

logger = logging.getLogger(__name__)


class QuestionBank:
    """Read-mostly index over the bundled question files."""

    def __init__(self, data_dir: Path = config.QUESTIONS_DIR):
        self.data_dir = Path(data_dir)
        self._categories: dict[str, dict[str, list]] = {}

    def category_path(self, category_id: str) -> Path:
        return self.data_dir / f"{category_id.lower()}.json"

    def _load_category(self, category_id: str) -> dict[str, list]:
        if category_id in self._categories:
            return self._categories[category_id]

        path = self.category_path(category_id)
        data: dict[str, list] = {}
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    data = loaded
                else:
                    logger.warning("Dataset file %s is not an object, ignoring it", path)
            except (json.JSONDecodeError, OSError, UnicodeDecodeError):
                logger.warning("Could not load dataset file %s", path, exc_info=True)

        self._categories[category_id] = data
        return data

    def lookup(
        self,
        stable_id: str,
        category_id: str,
        difficulty: Difficulty,
        language: str,
    ) -> Optional[list[QuestionRecord]]:
        """Find the bundled questions for a topic.

        Args:
            stable_id: Language-invariant topic id
            category_id: Category whose file holds the topic
            difficulty: Requested base difficulty
            language: Language of the questions

        Returns:
            Valid questions for the key, or None if the dataset has none
        """
        key = make_dataset_key(stable_id, difficulty, language)
        raw = self._load_category(category_id).get(key)
        if raw is None:
            return None

        result = decode_question_list(raw, stable_id)
        if not result.questions:
            logger.warning("Dataset entry %s has no valid questions", key)
            return None
        return result.questions

    def has_entry(self, stable_id: str, category_id: str, difficulty: Difficulty, language: str) -> bool:
        return self.lookup(stable_id, category_id, difficulty, language) is not None

    def write_entry(self, category_id: str, key: str, records: list[QuestionRecord]) -> None:
        """Add or replace one dataset entry and rewrite the category file.

        Used by master-data seeding. OSError propagates.
        """
        data = dict(self._load_category(category_id))
        data[key] = [r.to_dict() for r in records]
        write_json_locked(self.category_path(category_id), data)
        self._categories[category_id] = data
