"""Fuzzy mapping of scraped tokens onto catalog entities.

Resolution order (first match wins):

1. a standalone 1-2 digit number, matched against the zero-padded codes
2. exact case-insensitive name
3. normalized name (lowercase, no diacritics, letters only)
4. normalized substring containment in either direction
5. Levenshtein similarity above ``SIMILARITY_THRESHOLD``, lowest distance
   wins and ties keep catalog order
"""
from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Optional, Sequence

from .catalog import ENTITIES, Entity

NUMBER_PATTERN = re.compile(r'\b(\d{1,2})\b')
NON_LETTERS = re.compile(r'[^a-z]')
SIMILARITY_THRESHOLD = 0.70
MIN_NORMALIZED_LENGTH = 2


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize('NFD', text)
    return ''.join(ch for ch in decomposed if unicodedata.category(ch) != 'Mn')


def normalize_name(text: str) -> str:
    return NON_LETTERS.sub('', strip_accents(text.lower()))


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ch_a in enumerate(a, start=1):
        current = [i]
        for j, ch_b in enumerate(b, start=1):
            cost = 0 if ch_a == ch_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def resolve(token: Optional[str], catalog: Sequence[Entity] = ENTITIES) -> Optional[Entity]:
    if not token:
        return None
    clean = str(token).strip()
    if not clean:
        return None

    number_match = NUMBER_PATTERN.search(clean)
    if number_match:
        code = number_match.group(1).zfill(2)
        for entity in catalog:
            if entity.code == code:
                return entity

    lowered = clean.lower()
    for entity in catalog:
        if entity.name.lower() == lowered:
            return entity

    normalized = normalize_name(clean)
    if len(normalized) < MIN_NORMALIZED_LENGTH:
        return None

    normalized_catalog = [(entity, normalize_name(entity.name)) for entity in catalog]
    for entity, name in normalized_catalog:
        if name == normalized:
            return entity

    for entity, name in normalized_catalog:
        if name in normalized or normalized in name:
            return entity

    return _closest(normalized, normalized_catalog)


def _closest(normalized: str, candidates: Iterable[tuple[Entity, str]]) -> Optional[Entity]:
    best: Optional[Entity] = None
    best_distance = None
    for entity, name in candidates:
        distance = levenshtein(normalized, name)
        if 1 - distance / max(len(normalized), len(name)) <= SIMILARITY_THRESHOLD:
            continue
        if best_distance is None or distance < best_distance:
            best = entity
            best_distance = distance
    return best
