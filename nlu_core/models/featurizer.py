"""Tokenization and list-entity extraction shared by training and prediction."""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence

from nlu_core.core.schema import EntityDefinition, EntityMatch

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    return [t.lower() for t in _TOKEN_RE.findall(text or "")]


def extract_list_entities(text: str, entities: Iterable[EntityDefinition]) -> List[EntityMatch]:
    """Case-insensitive whole-word matches of list entity synonyms.

    Longer synonyms win over shorter ones that overlap them.
    """
    candidates: List[EntityMatch] = []
    for entity in entities:
        if entity.type != "list":
            continue
        for occurrence in entity.occurrences:
            value = occurrence["name"]
            for synonym in [value] + list(occurrence.get("synonyms", [])):
                if not synonym:
                    continue
                pattern = re.compile(rf"(?<!\w){re.escape(synonym)}(?!\w)", re.IGNORECASE)
                for m in pattern.finditer(text or ""):
                    candidates.append(
                        EntityMatch(name=entity.name, value=value, source=m.group(0), start=m.start(), end=m.end())
                    )

    candidates.sort(key=lambda e: (-(e.end - e.start), e.start))
    taken: List[EntityMatch] = []
    for match in candidates:
        if all(match.end <= t.start or match.start >= t.end for t in taken):
            taken.append(match)
    return sorted(taken, key=lambda e: e.start)


def featurize(text: str, entities: Sequence[EntityDefinition]) -> List[str]:
    """Tokens plus one `@entity` marker per matched list entity."""
    return tokenize(text) + [f"@{m.name}" for m in extract_list_entities(text, entities)]
