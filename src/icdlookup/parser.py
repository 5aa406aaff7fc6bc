"""Parsing of ICD-API search responses.

The registry's JSON allows most entity fields to be missing, so each entity
in ``destinationEntities`` is validated on its own: a malformed entity is
skipped, only a malformed envelope fails the whole parse.
"""

from __future__ import annotations

import html
import re

import structlog

from icdlookup.errors import ErrorCode, IcdLookupError
from icdlookup.models.search import SearchResult

log = structlog.get_logger()

# The registry wraps matched substrings in <em class='found'>...</em>
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_highlight_markup(text: str) -> str:
    """Return ``text`` as plain text: tags removed, entities decoded, spaces collapsed."""
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def parse_search_payload(payload: object) -> list[SearchResult]:
    """Convert a decoded search response into SearchResults.

    Raises IcdLookupError(PARSE_FAILED) if the envelope is not an object with
    a ``destinationEntities`` list. Entities lacking an ``id`` or ``title``
    are dropped.
    """
    if not isinstance(payload, dict):
        raise _parse_error("Search response is not a JSON object")

    entities = payload.get("destinationEntities")
    if not isinstance(entities, list):
        raise _parse_error("Search response has no 'destinationEntities' list")

    results: list[SearchResult] = []
    skipped = 0
    for raw in entities:
        result = _parse_entity(raw)
        if result is None:
            skipped += 1
            continue
        results.append(result)

    if skipped:
        log.debug("search_entities_skipped", skipped=skipped, kept=len(results))
    return results


def _parse_entity(raw: object) -> SearchResult | None:
    if not isinstance(raw, dict):
        return None

    entity_id = raw.get("id")
    title = raw.get("title")
    if not isinstance(entity_id, str) or not entity_id.strip():
        return None
    if not isinstance(title, str):
        return None

    plain_title = strip_highlight_markup(title)
    if not plain_title:
        return None

    return SearchResult(
        external_id=entity_id.strip(),
        code=_optional_str(raw.get("theCode")),
        title=plain_title,
        chapter_hint=_optional_str(raw.get("chapter")),
        relevance_score=_optional_number(raw.get("score")),
    )


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_number(value: object) -> float | None:
    # bool is an int subclass; a boolean score is not a score
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _parse_error(message: str) -> IcdLookupError:
    return IcdLookupError(
        code=ErrorCode.PARSE_FAILED,
        message=message,
        suggestion="The ICD-API returned an unexpected response; results are served offline.",
        recoverable=False,
    )
