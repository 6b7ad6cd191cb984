"""
Response Repair Pipeline - turn provider text into a usable value.

Providers are asked for a JSON object but routinely return markdown fences,
trailing commas, arrays around the object, or strings with unescaped quotes.
Repair runs an explicit ordered list of strategies (chain of responsibility):
each strategy is a pure ``text -> RepairResult`` function that raises
RepairFailure when it cannot produce a value, and the first value that also
passes validation wins.

    pipeline = object_pipeline()
    result = pipeline.run(text)        # raises RepairExhaustedError
    insights: ProviderInsights = result.value
    if result.degraded: ...            # a lossy strategy was needed

Nothing here touches the network or logs provider text.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from moodq.insights.errors import RepairExhaustedError
from moodq.insights.models import ProviderInsights, coerce_str_list
from moodq.observability.logging import get_logger

logger = get_logger(__name__)

REQUIRED_KEYS = ("sentiment", "predictions", "insights", "recommendations")
SALVAGE_LIST_KEYS = ("insights", "recommendations")

MIN_QUOTED_RUN = 10
MIN_SENTENCE_CHARS = 20
MAX_SENTENCES = 3

_FENCE_OPEN_RE = re.compile(r"```(?:json|JSON)?\s*")
_FENCE_CLOSE_RE = re.compile(r"```\s*")
_QUOTED_RUN_RE = re.compile(r'"([^"]{%d,})"' % MIN_QUOTED_RUN)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

# CPython's decoder raises RecursionError, not JSONDecodeError, on deep nesting
_PARSE_ERRORS = (json.JSONDecodeError, RecursionError)


class RepairFailure(ValueError):
    """A single strategy (or validation) could not produce a value."""


@dataclass(frozen=True)
class RepairResult:
    value: Any
    strategy: str
    degraded: bool = False


Strategy = Callable[[str], RepairResult]


# --- Text helpers ---


def _remove_fences(text: str) -> str:
    text = _FENCE_OPEN_RE.sub("", text)
    text = _FENCE_CLOSE_RE.sub("", text)
    return text.strip()


def _outermost(text: str, open_char: str, close_char: str) -> str | None:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _fix_commas(text: str) -> str:
    # Missing commas between fields split across lines
    repaired = re.sub(r'"\s*\n\s*"', '",\n"', text)
    repaired = re.sub(r"(\d+\.?\d*|true|false|null)\s*\n\s*\"", r'\1,\n"', repaired)
    repaired = re.sub(r'\}\s*\n\s*"', '},\n"', repaired)
    repaired = re.sub(r'\]\s*\n\s*"', '],\n"', repaired)
    repaired = re.sub(r"\}\s*\n\s*\{", "},\n{", repaired)
    return _TRAILING_COMMA_RE.sub(r"\1", repaired)


def _unwrap_array(value: Any) -> Any:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return value


def _split_top_level(body: str) -> list[str]:
    """Split on commas outside quotes and nested brackets.

    A quote not preceded by a backslash toggles the in-string state, so the
    split survives unescaped inner quotes as long as they come in pairs.
    """
    parts: list[str] = []
    current: list[str] = []
    in_string = False
    depth = 0
    prev = ""

    for ch in body:
        if ch == '"' and prev != "\\":
            in_string = not in_string
        elif not in_string:
            if ch in "[{":
                depth += 1
            elif ch in "]}":
                depth -= 1
            elif ch == "," and depth == 0:
                parts.append("".join(current))
                current = []
                prev = ch
                continue
        current.append(ch)
        prev = ch

    parts.append("".join(current))
    return parts


def _clean_item(item: str) -> str:
    item = item.strip()
    if len(item) >= 2 and item[0] == item[-1] and item[0] in "\"'":
        item = item[1:-1]
    return item.replace('\\"', '"').strip()


# --- Strategies ---


def strip_fences(text: str) -> RepairResult:
    """Strip markdown fences and whitespace, then parse directly."""
    cleaned = _remove_fences(text)
    try:
        return RepairResult(json.loads(cleaned), "strip_fences")
    except _PARSE_ERRORS as e:
        raise RepairFailure(f"strip_fences: {e}") from e


def normalize_structure(text: str) -> RepairResult:
    """
    Structural repair: outermost bracket pair, missing/trailing commas,
    missing wrapping braces, single object wrapped in an array.
    """
    cleaned = _remove_fences(text)

    candidates: list[str] = []
    obj = _outermost(cleaned, "{", "}")
    arr = _outermost(cleaned, "[", "]")
    bracketed = [c for c in (obj, arr) if c is not None]
    bracketed.sort(key=lambda c: cleaned.find(c))
    candidates.extend(bracketed)

    if cleaned and not cleaned.startswith("["):
        braced = cleaned.strip(",").strip()
        if not braced.startswith("{"):
            braced = "{" + braced
        if not braced.endswith("}"):
            braced = braced + "}"
        candidates.append(braced)

    for candidate in candidates:
        try:
            value = json.loads(_fix_commas(candidate))
        except _PARSE_ERRORS:
            continue
        return RepairResult(_unwrap_array(value), "normalize_structure", degraded=True)

    raise RepairFailure("normalize_structure: no parsable bracket structure")


def extract_string_list(text: str) -> RepairResult:
    """
    Recover a list of strings from text that should have been a JSON array.

    Tries, in order: splitting the outermost [...] on top-level commas,
    quoted runs of at least 10 chars, sentence segmentation (runs over 20
    chars, at most 3).
    """
    cleaned = _remove_fences(text)

    arr = _outermost(cleaned, "[", "]")
    if arr is not None:
        try:
            parsed = json.loads(arr)
        except _PARSE_ERRORS:
            parsed = None
        if isinstance(parsed, list):
            items = coerce_str_list(parsed)
        else:
            items = [_clean_item(part) for part in _split_top_level(arr[1:-1])]
            items = [item for item in items if item]
        if items:
            return RepairResult(items, "extract_string_list", degraded=True)

    quoted = [run.strip() for run in _QUOTED_RUN_RE.findall(cleaned) if run.strip()]
    if quoted:
        return RepairResult(quoted, "extract_string_list", degraded=True)

    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(cleaned)]
    sentences = [s for s in sentences if len(s) > MIN_SENTENCE_CHARS][:MAX_SENTENCES]
    if sentences:
        return RepairResult(sentences, "extract_string_list", degraded=True)

    raise RepairFailure("extract_string_list: no recoverable strings")


def _salvage_list(text: str, key: str) -> list[str]:
    match = re.search(r'"%s"\s*:\s*\[(.*?)\]' % re.escape(key), text, re.DOTALL)
    if not match:
        return []
    try:
        return extract_string_list(f"[{match.group(1)}]").value
    except RepairFailure:
        return []


def _salvage_scalar(text: str, key: str, pattern: str) -> str | None:
    match = re.search(r'"%s"\s*:\s*%s' % (re.escape(key), pattern), text)
    return match.group(1) if match else None


def salvage_fields(text: str) -> RepairResult:
    """Field-by-field recovery of a broken insights object."""
    cleaned = _remove_fences(text)
    value: dict[str, Any] = {}

    for key in SALVAGE_LIST_KEYS:
        items = _salvage_list(cleaned, key)
        if items:
            value[key] = items

    overall = _salvage_scalar(cleaned, "overallSentiment", r'"(\w+)"')
    score = _salvage_scalar(cleaned, "sentimentScore", r"(-?\d+(?:\.\d+)?)")
    if overall is not None or score is not None:
        value["sentiment"] = {"overallSentiment": overall, "sentimentScore": score}

    prediction = _salvage_scalar(cleaned, "moodPrediction", r'"(\w+)"')
    if prediction is not None:
        value["predictions"] = {"moodPrediction": prediction}

    if not value:
        raise RepairFailure("salvage_fields: no known fields recovered")
    return RepairResult(value, "salvage_fields", degraded=True)


# --- Validation ---


def validate_insights_object(value: Any) -> ProviderInsights:
    if not isinstance(value, dict):
        raise RepairFailure(f"expected object, got {type(value).__name__}")
    if not any(key in value for key in REQUIRED_KEYS):
        raise RepairFailure("object has none of the expected keys")
    try:
        return ProviderInsights.model_validate(value)
    except ValidationError as e:
        raise RepairFailure(f"validation failed: {e.error_count()} errors") from e


def validate_string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        raise RepairFailure(f"expected array, got {type(value).__name__}")
    items = coerce_str_list(value)
    if not items:
        raise RepairFailure("array has no non-empty strings")
    return items


# --- Pipeline ---


@dataclass
class RepairPipeline:
    strategies: Sequence[Strategy]
    validator: Callable[[Any], Any] = lambda value: value
    failures: list[str] = field(default_factory=list, init=False)

    def run(self, text: str) -> RepairResult:
        """
        Run strategies in order; return the first validated result.

        Raises:
            RepairExhaustedError: every strategy failed (or failed validation)
        """
        self.failures = []
        if not text or not text.strip():
            raise RepairExhaustedError("Empty provider response")

        for strategy in self.strategies:
            try:
                result = strategy(text)
                value = self.validator(result.value)
            except RepairFailure as e:
                self.failures.append(str(e))
                continue

            if result.degraded:
                logger.warning("JSON repair succeeded via %s", result.strategy)
            return RepairResult(value, result.strategy, result.degraded)

        logger.warning("JSON repair exhausted after %d strategies", len(self.strategies))
        raise RepairExhaustedError(
            f"All {len(self.strategies)} repair strategies failed: " + "; ".join(self.failures)
        )


def object_pipeline() -> RepairPipeline:
    """Pipeline for the provider's insights object."""
    return RepairPipeline(
        strategies=(strip_fences, normalize_structure, salvage_fields),
        validator=validate_insights_object,
    )


def string_list_pipeline() -> RepairPipeline:
    """Pipeline for a bare array of strings."""
    return RepairPipeline(
        strategies=(strip_fences, normalize_structure, extract_string_list),
        validator=validate_string_list,
    )
