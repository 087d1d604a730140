"""Ban-list and profanity filtering.

Filtering never removes items; it tags them with a SuppressReason that the
retrieval scheduler honours. Negative terms use these forms:

    !@name      ban items authored by ``name`` (case-insensitive exact match)
    !http...    ban the item with that exact URI (case-insensitive)
    !word       ban items containing ``word`` as a whole word in any text field
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Pattern

from feed_processor.models.enums import SourceType, SuppressReason
from feed_processor.models.feed_item import FeedItem

logger = logging.getLogger(__name__)

NEGATIVE_MARKER = "!"
AUTHOR_MARKER = "@"
GROUP_MARKER = "+"


def _word_pattern(alternatives: Iterable[str]) -> Pattern:
    escaped = sorted((re.escape(word) for word in alternatives), key=len, reverse=True)
    return re.compile(r"(?<!\w)(?:{})(?!\w)".format("|".join(escaped)), re.IGNORECASE)


def negative_terms(terms: Iterable[str]) -> List[str]:
    """Terms that only suppress content and never create feeds."""
    return [t for t in terms if t.startswith(NEGATIVE_MARKER) and len(t) > 1]


class FilterEngine:
    """Evaluates negative terms and the profanity list against feed items."""

    def __init__(
        self,
        profanity_words: Optional[Iterable[str]] = None,
        profanity_enabled: bool = False,
        prometheus_exporter=None,
    ):
        self.prometheus_exporter = prometheus_exporter
        self.profanity_enabled = profanity_enabled
        self._terms: Dict[SourceType, List[str]] = {}
        self._keyword_patterns: Dict[str, Pattern] = {}
        self._profanity_words: List[str] = []
        self._profanity_pattern: Optional[Pattern] = None
        self.set_profanity_words(profanity_words or [])

    def set_terms(self, source_type: SourceType, terms: Iterable[str]) -> None:
        """Replace the negative terms for one category."""
        self._terms[source_type] = negative_terms(terms)

    def terms_for(self, source_type: SourceType) -> List[str]:
        return list(self._terms.get(source_type, []))

    @property
    def profanity_words(self) -> List[str]:
        return list(self._profanity_words)

    def set_profanity_words(self, words: Iterable[str]) -> None:
        cleaned = []
        for word in words:
            word = word.strip()
            if word and word not in cleaned:
                cleaned.append(word)
        self._profanity_words = cleaned
        self._profanity_pattern = _word_pattern(cleaned) if cleaned else None

    def evaluate(self, item: FeedItem, terms: Optional[Iterable[str]] = None) -> SuppressReason:
        """
        Recompute an item's suppression reason from scratch.

        Args:
            item: Item to tag; its ``suppress_reason`` is overwritten
            terms: Term list to apply, defaults to the item's category terms

        Returns:
            The new suppression reason
        """
        if terms is None:
            terms = self._terms.get(item.source_type, [])

        previous = item.suppress_reason
        item.suppress_reason = SuppressReason.NONE

        reason = self._match_terms(item, terms)
        if reason is SuppressReason.NONE and self._matches_profanity(item):
            reason = SuppressReason.PROFANITY

        item.suppress_reason = reason
        if reason is not SuppressReason.NONE and reason is not previous:
            logger.debug(f"Suppressed {item.uri} ({reason.value})")
            if self.prometheus_exporter:
                self.prometheus_exporter.record_item_suppressed(reason.value)
        return reason

    def _match_terms(self, item: FeedItem, terms: Iterable[str]) -> SuppressReason:
        for term in terms:
            if not term.startswith(NEGATIVE_MARKER):
                continue
            rule = term[1:]
            if not rule:
                continue

            if rule.startswith(AUTHOR_MARKER):
                if item.author and item.author.lower() == rule[1:].lower():
                    return SuppressReason.AUTHOR
                continue

            if rule.lower().startswith("http"):
                if item.uri.lower() == rule.lower():
                    return SuppressReason.URI
                continue

            if self._matches_keyword(rule, item):
                return SuppressReason.KEYWORD

        return SuppressReason.NONE

    def _matches_keyword(self, keyword: str, item: FeedItem) -> bool:
        pattern = self._keyword_patterns.get(keyword)
        if pattern is None:
            pattern = self._keyword_patterns[keyword] = _word_pattern([keyword])
        return any(field and pattern.search(field) for field in item.text_fields())

    def _matches_profanity(self, item: FeedItem) -> bool:
        if not self.profanity_enabled or self._profanity_pattern is None:
            return False
        content = " ".join(field for field in item.text_fields() if field)
        return self._profanity_pattern.search(content) is not None
