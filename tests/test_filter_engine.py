"""Tests for the filter engine."""

import unittest
from unittest.mock import MagicMock

from feed_processor.filtering.filter_engine import FilterEngine, negative_terms
from feed_processor.models.enums import SourceType, SuppressReason
from tests.factories import make_image, make_news, make_status


class TestNegativeTerms(unittest.TestCase):
    """Author, URI and keyword rules."""

    def setUp(self):
        self.engine = FilterEngine()

    def test_author_ban_and_unban(self):
        self.engine.set_terms(SourceType.TWITTER, ["kittens", "!@alice"])
        item = make_status("1", author="alice", text="hello")

        self.assertEqual(self.engine.evaluate(item), SuppressReason.AUTHOR)

        self.engine.set_terms(SourceType.TWITTER, ["kittens"])
        self.assertEqual(self.engine.evaluate(item), SuppressReason.NONE)
        self.assertFalse(item.is_suppressed)

    def test_author_match_is_case_insensitive_and_exact(self):
        self.engine.set_terms(SourceType.TWITTER, ["!@Alice"])
        self.assertEqual(self.engine.evaluate(make_status("1", author="ALICE")), SuppressReason.AUTHOR)
        self.assertEqual(self.engine.evaluate(make_status("2", author="alice2")), SuppressReason.NONE)

    def test_uri_ban(self):
        item = make_image("banned")
        self.engine.set_terms(SourceType.FLICKR, ["!" + item.uri.upper()])

        self.assertEqual(self.engine.evaluate(item), SuppressReason.URI)
        self.assertEqual(self.engine.evaluate(make_image("other")), SuppressReason.NONE)

    def test_keyword_matches_whole_words_only(self):
        self.engine.set_terms(SourceType.FLICKR, ["!cat"])

        self.assertEqual(self.engine.evaluate(make_image("1", caption="A Cat!")), SuppressReason.KEYWORD)
        self.assertEqual(self.engine.evaluate(make_image("2", caption="concatenate")), SuppressReason.NONE)
        self.assertEqual(self.engine.evaluate(make_image("3", caption="cats")), SuppressReason.NONE)

    def test_keyword_checks_every_text_field(self):
        self.engine.set_terms(SourceType.NEWS, ["!election"])
        item = make_news("1", title="Morning briefing", body="<p>The election is close</p>")
        self.assertEqual(self.engine.evaluate(item), SuppressReason.KEYWORD)

    def test_keyword_with_regex_characters(self):
        self.engine.set_terms(SourceType.TWITTER, ["!c++"])
        self.assertEqual(self.engine.evaluate(make_status("1", text="learning c++ today")), SuppressReason.KEYWORD)

    def test_first_matching_rule_wins(self):
        item = make_status("1", author="bob", text="spam spam")
        self.engine.set_terms(SourceType.TWITTER, ["!spam", "!@bob"])
        self.assertEqual(self.engine.evaluate(item), SuppressReason.KEYWORD)

        self.engine.set_terms(SourceType.TWITTER, ["!@bob", "!spam"])
        self.assertEqual(self.engine.evaluate(item), SuppressReason.AUTHOR)

    def test_terms_are_per_source(self):
        self.engine.set_terms(SourceType.TWITTER, ["!@alice"])
        self.assertEqual(self.engine.evaluate(make_image("1", author="alice")), SuppressReason.NONE)

    def test_explicit_terms_override_stored_terms(self):
        item = make_status("1", author="alice")
        self.assertEqual(self.engine.evaluate(item, ["!@alice"]), SuppressReason.AUTHOR)

    def test_evaluation_is_idempotent(self):
        self.engine.set_terms(SourceType.TWITTER, ["!@alice", "!spam"])
        item = make_status("1", author="alice", text="spam")
        first = self.engine.evaluate(item)
        second = self.engine.evaluate(item)
        self.assertEqual(first, second)

    def test_only_negative_terms_are_kept(self):
        self.assertEqual(negative_terms(["a", "!b", "@c", "!", "+d"]), ["!b"])


class TestProfanity(unittest.TestCase):
    """Profanity pass."""

    def setUp(self):
        self.engine = FilterEngine(profanity_words=["darn", "heck"], profanity_enabled=True)

    def test_profanity_match(self):
        item = make_status("1", text="Well, DARN it")
        self.assertEqual(self.engine.evaluate(item), SuppressReason.PROFANITY)

    def test_profanity_spans_fields(self):
        item = make_image("1", author="heck", caption="nice view")
        self.assertEqual(self.engine.evaluate(item), SuppressReason.PROFANITY)

    def test_profanity_does_not_override_other_reasons(self):
        self.engine.set_terms(SourceType.TWITTER, ["!@alice"])
        item = make_status("1", author="alice", text="darn")
        self.assertEqual(self.engine.evaluate(item), SuppressReason.AUTHOR)

    def test_disabling_profanity_clears_reason(self):
        item = make_status("1", text="darn")
        self.engine.evaluate(item)

        self.engine.profanity_enabled = False
        self.assertEqual(self.engine.evaluate(item), SuppressReason.NONE)

    def test_updating_word_list(self):
        self.engine.set_profanity_words(["  gosh ", "", "gosh"])
        self.assertEqual(self.engine.profanity_words, ["gosh"])
        self.assertEqual(self.engine.evaluate(make_status("1", text="darn")), SuppressReason.NONE)
        self.assertEqual(self.engine.evaluate(make_status("2", text="oh gosh")), SuppressReason.PROFANITY)

    def test_empty_word_list_never_matches(self):
        engine = FilterEngine(profanity_words=[], profanity_enabled=True)
        self.assertEqual(engine.evaluate(make_status("1", text="anything")), SuppressReason.NONE)

    def test_suppression_metric_is_recorded_once(self):
        exporter = MagicMock()
        engine = FilterEngine(profanity_words=["darn"], profanity_enabled=True, prometheus_exporter=exporter)
        item = make_status("1", text="darn")

        engine.evaluate(item)
        engine.evaluate(item)

        exporter.record_item_suppressed.assert_called_once_with("profanity")


if __name__ == "__main__":
    unittest.main()
