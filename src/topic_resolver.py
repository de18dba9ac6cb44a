"""
Topic identity resolution.

Players pick topics by their localized label. Storage is keyed by the
label's form in the master language (the stable id), so "양자 역학" and
"Quantum Physics" resolve to the same questions. The topic tables map
language -> category -> labels, with labels index-aligned across
languages.
"""
import json
import logging
from pathlib import Path
from typing import Optional

import config
from quiz_models import GENERAL_CATEGORY, MASTER_LANGUAGE, TopicRequest

logger = logging.getLogger(__name__)


def load_topic_tables(path: Path = config.TOPICS_FILE) -> dict[str, dict[str, list[str]]]:
    """Load the topic tables.

    Args:
        path: JSON file of {language: {category: [labels]}}

    Returns:
        The tables (empty if the file is missing or unreadable)
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        logger.error("Could not load topic tables from %s", path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


class TopicResolver:
    """Maps display labels to stable topic identities and back."""

    def __init__(self, tables: dict[str, dict[str, list[str]]], master_language: str = MASTER_LANGUAGE):
        self.tables = tables
        self.master_language = master_language

    @classmethod
    def from_file(cls, path: Path = config.TOPICS_FILE) -> "TopicResolver":
        return cls(load_topic_tables(path))

    def _find(self, label: str, language: str) -> Optional[tuple[str, int]]:
        """Locate a label in one language's table as (category, index)."""
        needle = label.strip().casefold()
        for category, labels in self.tables.get(language, {}).items():
            for index, candidate in enumerate(labels):
                if candidate.casefold() == needle:
                    return category, index
        return None

    def _master_label(self, category: str, index: int) -> Optional[str]:
        labels = self.tables.get(self.master_language, {}).get(category, [])
        return labels[index] if index < len(labels) else None

    def resolve(self, label: str, language: str) -> TopicRequest:
        """Normalize a player-facing label.

        Tries the label in its display language, then as a master-language
        label. An unknown label is never rejected: it lands in the generic
        category with the label itself as the stable id.

        Args:
            label: Label as shown to the player
            language: Language the label was shown in

        Returns:
            TopicRequest with stable id and category
        """
        found = self._find(label, language)
        if found:
            category, index = found
            stable_id = self._master_label(category, index)
            if stable_id:
                return TopicRequest(display_label=label, stable_id=stable_id, category_id=category)

        found = self._find(label, self.master_language)
        if found:
            category, index = found
            return TopicRequest(
                display_label=label,
                stable_id=self._master_label(category, index),
                category_id=category,
            )

        logger.warning("Unresolved topic label %r (%s), using %s", label, language, GENERAL_CATEGORY)
        return TopicRequest(display_label=label, stable_id=label.strip(), category_id=GENERAL_CATEGORY)

    def resolve_all(self, labels: list[str], language: str) -> list[TopicRequest]:
        return [self.resolve(label, language) for label in labels]

    def localize(self, stable_id: str, language: str) -> str:
        """Display label for a stable id in a language (stable id if unknown)."""
        found = self._find(stable_id, self.master_language)
        if not found:
            return stable_id
        category, index = found
        labels = self.tables.get(language, {}).get(category, [])
        return labels[index] if index < len(labels) else stable_id

    def labels_for(self, category: str, language: str) -> list[str]:
        """All labels of a category in a language."""
        return list(self.tables.get(language, {}).get(category, []))

    def categories(self) -> list[str]:
        return list(self.tables.get(self.master_language, {}).keys())
