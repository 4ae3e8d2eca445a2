"""
Tests for routing tag extraction.
"""

from src.bridge.tags import TagExtractor, build_tag_pattern, format_tag, route_codes


class TestTagExtractor:
    def test_tag_split_across_fragments(self):
        extractor = TagExtractor(["JAY", "ROBERTO"])
        extractor.feed("Hello [[ROUTE:")
        extractor.feed("JAY]] thanks")

        assert extractor.complete_turn() == "JAY"
        assert extractor.text == ""

    def test_case_insensitive_and_whitespace_tolerant(self):
        extractor = TagExtractor(["JAY"])
        extractor.feed("sure, [[ route : jay ]]")

        assert extractor.complete_turn() == "JAY"

    def test_message_and_end_directives(self):
        extractor = TagExtractor(["JAY"])

        extractor.feed("[[ROUTE:MESSAGE]]")
        assert extractor.complete_turn() == "MESSAGE"

        extractor.feed("Goodbye! [[ROUTE:end]]")
        assert extractor.complete_turn() == "END"

    def test_first_match_wins(self):
        extractor = TagExtractor(["JAY", "ROBERTO"])
        extractor.feed("[[ROUTE:ROBERTO]] or maybe [[ROUTE:JAY]]")

        assert extractor.complete_turn() == "ROBERTO"

    def test_unknown_and_malformed_tags_ignored(self):
        extractor = TagExtractor(["JAY"])
        extractor.feed("[[ROUTE:NOBODY]] [ROUTE:JAY] [[ROUTE JAY]]")

        assert extractor.complete_turn() is None

    def test_no_tag_resets_buffer(self):
        extractor = TagExtractor(["JAY"])
        extractor.feed("How can I help?")

        assert extractor.complete_turn() is None
        assert extractor.text == ""

    def test_text_never_carries_across_turns(self):
        extractor = TagExtractor(["JAY"])
        extractor.feed("[[ROUTE:")
        assert extractor.complete_turn() is None

        extractor.feed("JAY]]")
        assert extractor.complete_turn() is None


def test_route_codes_adds_directives_once():
    assert route_codes(["jay", "JAY", " office "]) == ("JAY", "OFFICE", "MESSAGE", "END")


def test_longer_codes_not_shadowed():
    pattern = build_tag_pattern(route_codes(["ENDICOTT"]))
    assert pattern.search("[[ROUTE:ENDICOTT]]").group(1) == "ENDICOTT"


def test_format_tag():
    assert format_tag("jay") == "[[ROUTE:JAY]]"
