"""
column_detector.py

Proposes a canonical field -> column index mapping from a spreadsheet header
row and a few sample rows, even when the headers are in another language or
loosely spelled.

Matching is table driven: ``FIELD_MATCHERS`` lists, per canonical field,
the matchers that can vote for a column together with their weight. Every
(field, column) pair keeps its best vote and a single greedy reduction turns
the votes into a mapping where each field gets at most one column and each
column at most one field.

Detection never raises. A header row nothing matches produces an empty
mapping with confidence 0; the caller decides what to do with it.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from stocktake.cells import cell_text, is_blank, parse_ordinal, parse_quantity
from stocktake.mapping import REQUIRED_FIELDS, ColumnMapping, validate_mapping
from stocktake.units import is_known_unit

LOW_CONFIDENCE_THRESHOLD = 50
MAX_SUGGESTIONS = 3

TIER_EXACT = "exact"
TIER_SUBSTRING = "substring"
TIER_SAMPLE = "sample"

TIER_CREDIT = {TIER_EXACT: 1.0, TIER_SUBSTRING: 0.75, TIER_SAMPLE: 0.4}

# Earlier fields win ties on the same column.
FIELD_PRIORITY = ("name", "quantity", "unit", "itemId", "lp")

EXTRA_FOLDS = str.maketrans({"ł": "l", "Ł": "l", "ø": "o", "đ": "d", "ß": "ss"})
PUNCTUATION_RE = re.compile(r"[^0-9a-z]+")


def normalize_header(value: Any) -> str:
    """Lower-case, strip diacritics and punctuation, collapse whitespace."""
    text = cell_text(value).translate(EXTRA_FOLDS)
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(PUNCTUATION_RE.sub(" ", stripped.lower()).split())


def _contains_keyword(token: str, keyword: str) -> bool:
    # Short keywords ("id", "jm") must stand alone as a word.
    if len(keyword) <= 3:
        return keyword in token.split()
    return keyword in token


@dataclass(frozen=True)
class HeaderMatcher:
    tier: str
    keywords: tuple[str, ...]
    weight: float

    def score(self, token: str, values: Sequence[Any]) -> float:
        if not token:
            return 0.0
        if self.tier == TIER_EXACT:
            return self.weight if token in self.keywords else 0.0
        return self.weight if any(_contains_keyword(token, kw) for kw in self.keywords) else 0.0


@dataclass(frozen=True)
class SampleMatcher:
    predicate: Callable[[Sequence[Any]], bool]
    weight: float
    tier: str = TIER_SAMPLE

    def score(self, token: str, values: Sequence[Any]) -> float:
        if not values:
            return 0.0
        return self.weight if self.predicate(values) else 0.0


def _all_numeric(values: Sequence[Any]) -> bool:
    return all(parse_quantity(value) is not None for value in values)


def _sequential_from_one(values: Sequence[Any]) -> bool:
    ordinals = [parse_ordinal(value) for value in values]
    if len(ordinals) < 2:
        return False
    return ordinals == list(range(1, len(ordinals) + 1))


def _all_known_units(values: Sequence[Any]) -> bool:
    return all(is_known_unit(cell_text(value)) for value in values)


def exact(*keywords: str) -> HeaderMatcher:
    return HeaderMatcher(TIER_EXACT, tuple(keywords), 3.0)


def substring(*keywords: str) -> HeaderMatcher:
    return HeaderMatcher(TIER_SUBSTRING, tuple(keywords), 2.0)


FIELD_MATCHERS: dict[str, tuple[HeaderMatcher | SampleMatcher, ...]] = {
    "lp": (
        exact("lp", "l p", "nr porzadkowy", "numer porzadkowy", "liczba porzadkowa", "pozycja",
              "position", "no", "row", "row number", "line", "line number", "nr", "pos"),
        substring("porzadkow", "line no", "row no"),
        SampleMatcher(_sequential_from_one, 1.0),
    ),
    "itemId": (
        exact("nr indeksu", "numer indeksu", "indeks", "index", "kod", "kod produktu", "kod towaru",
              "code", "item code", "product code", "stock code", "id", "item id", "identyfikator", "symbol",
              "sku", "part number", "part no", "item number", "material", "ean"),
        substring("indeks", "index", "kod", "code", "sku", "symbol", "id", "ean"),
    ),
    "name": (
        exact("nazwa", "nazwa towaru", "nazwa produktu", "nazwa pl", "produkt", "product",
              "product name", "item", "item name", "towar", "goods", "description", "opis",
              "name", "article", "artykul"),
        substring("nazw", "name", "product", "produkt", "towar", "opis", "descr", "artyku"),
    ),
    "quantity": (
        exact("ilosc", "ilosc szt", "qty", "quantity", "liczba", "amount", "count", "stan",
              "stock", "inventory", "szt ilosc", "on hand"),
        substring("ilosc", "qty", "quant", "liczb", "stan", "amount", "count", "stock"),
        SampleMatcher(_all_numeric, 1.0),
    ),
    "unit": (
        exact("jmz", "jm", "j m", "jednostka", "jednostka miary", "jednostka m", "unit", "units",
              "uom", "unit of measure", "miara", "measure", "um", "u m"),
        substring("jednost", "unit", "miar", "uom", "jmz"),
        SampleMatcher(_all_known_units, 1.0),
    ),
}


@dataclass(frozen=True)
class FieldMatch:
    column: int
    header: str
    tier: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"column": self.column, "header": self.header, "tier": self.tier, "score": self.score}


@dataclass
class DetectionResult:
    mapping: dict[str, int]
    confidence: int
    matches: dict[str, FieldMatch] = field(default_factory=dict)
    suggestions: dict[str, list[int]] = field(default_factory=dict)
    column_count: int = 0

    @property
    def low_confidence(self) -> bool:
        return self.confidence < LOW_CONFIDENCE_THRESHOLD

    @property
    def is_complete(self) -> bool:
        return all(name in self.mapping for name in REQUIRED_FIELDS)

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if name not in self.mapping]

    def errors(self) -> list[str]:
        return validate_mapping(self.mapping, self.column_count)

    def to_column_mapping(self) -> ColumnMapping:
        return ColumnMapping.from_dict(self.mapping, self.column_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mapping": dict(self.mapping),
            "confidence": self.confidence,
            "low_confidence": self.low_confidence,
            "missing_fields": self.missing_fields(),
            "matches": {name: match.to_dict() for name, match in self.matches.items()},
            "suggestions": {name: list(columns) for name, columns in self.suggestions.items()},
        }


def _column_values(sample_rows: Sequence[Sequence[Any]], index: int) -> list[Any]:
    values = []
    for row in sample_rows:
        if row is None or index >= len(row):
            continue
        if is_blank(row[index]):
            continue
        values.append(row[index])
    return values


def score_column(field_name: str, token: str, values: Sequence[Any]) -> tuple[float, str | None]:
    """Best (score, tier) any matcher for ``field_name`` gives this column."""
    best_score = 0.0
    best_tier = None
    for matcher in FIELD_MATCHERS[field_name]:
        if matcher.tier == TIER_SAMPLE and best_score > 0:
            # sample data only decides between otherwise unmatched headers
            continue
        score = matcher.score(token, values)
        if score > best_score:
            best_score = score
            best_tier = matcher.tier
    return best_score, best_tier


def _select(candidates: list[tuple[float, int, int, str, str]]) -> dict[str, tuple[int, str, float]]:
    chosen: dict[str, tuple[int, str, float]] = {}
    claimed: set[int] = set()
    for score, _, column, field_name, tier in sorted(candidates, key=lambda c: (-c[0], c[1], c[2])):
        if field_name in chosen or column in claimed:
            continue
        chosen[field_name] = (column, tier, score)
        claimed.add(column)
    return chosen


def _confidence(chosen: dict[str, tuple[int, str, float]]) -> int:
    credit = sum(TIER_CREDIT[chosen[name][1]] for name in REQUIRED_FIELDS if name in chosen)
    return int(round(100 * credit / len(REQUIRED_FIELDS)))


def detect_columns(
    headers: Sequence[Any] | None,
    sample_rows: Sequence[Sequence[Any]] | None = None,
) -> DetectionResult:
    headers = list(headers or [])
    sample_rows = [list(row) for row in (sample_rows or []) if row is not None]
    if not headers:
        return DetectionResult(mapping={}, confidence=0, column_count=0)

    tokens = [normalize_header(header) for header in headers]
    candidates: list[tuple[float, int, int, str, str]] = []
    per_field: dict[str, list[tuple[float, int]]] = {name: [] for name in FIELD_PRIORITY}

    for column, token in enumerate(tokens):
        values = _column_values(sample_rows, column)
        for priority, field_name in enumerate(FIELD_PRIORITY):
            score, tier = score_column(field_name, token, values)
            if score <= 0 or tier is None:
                continue
            candidates.append((score, priority, column, field_name, tier))
            per_field[field_name].append((score, column))

    chosen = _select(candidates)

    mapping = {name: chosen[name][0] for name in FIELD_PRIORITY if name in chosen}
    matches = {
        name: FieldMatch(column=column, header=cell_text(headers[column]), tier=tier, score=score)
        for name, (column, tier, score) in chosen.items()
    }
    suggestions = {}
    for name, scored in per_field.items():
        picked = mapping.get(name)
        alternatives = [column for score, column in sorted(scored, key=lambda s: (-s[0], s[1])) if column != picked]
        if alternatives:
            suggestions[name] = alternatives[:MAX_SUGGESTIONS]

    return DetectionResult(
        mapping=mapping,
        confidence=_confidence(chosen),
        matches=matches,
        suggestions=suggestions,
        column_count=len(headers),
    )


def suggest_column_roles(headers: Sequence[Any] | None) -> list[dict[str, Any]]:
    """Per-column candidate fields for a manual mapping screen."""
    suggestions = []
    for column, header in enumerate(headers or []):
        token = normalize_header(header)
        possible = [
            name for name in FIELD_PRIORITY
            if any(
                isinstance(matcher, HeaderMatcher) and matcher.score(token, []) > 0
                for matcher in FIELD_MATCHERS[name]
            )
        ]
        suggestions.append(
            {
                "column": column,
                "header": cell_text(header),
                "possible_fields": possible or ["unknown"],
                "confidence": 80 if possible else 30,
            }
        )
    return suggestions
