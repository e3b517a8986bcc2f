"""
Unit tests for marker matching and content normalization.
"""
import pytest

from uftt_scanner import (
    ConfigurationError,
    MarkerMatcher,
    compile_marker_pattern,
    normalize_content,
)


class TestMarkerMatcher:
    """Tests for MarkerMatcher.finditer"""

    def test_marker_with_ttid(self, matcher):
        """The ttid attribute and content are extracted"""
        markers = list(matcher.finditer('<UFTT ttid="greet">Hello</UFTT>'))
        assert len(markers) == 1
        assert markers[0].tag == "UFTT"
        assert markers[0].ttid == "greet"
        assert markers[0].content == "Hello"

    def test_marker_without_ttid(self, matcher):
        """Without ttid attribute the identifier is absent"""
        markers = list(matcher.finditer("<UFTTSpan>Cancel</UFTTSpan>"))
        assert markers[0].ttid is None
        assert markers[0].content == "Cancel"

    def test_attribute_order_is_irrelevant(self, matcher):
        """Other attributes before and after ttid are tolerated"""
        text = "<UFTTDiv className=\"title\" ttid=\"page.title\" data-x='1'>Title</UFTTDiv>"
        markers = list(matcher.finditer(text))
        assert markers[0].tag == "UFTTDiv"
        assert markers[0].ttid == "page.title"
        assert markers[0].content == "Title"

    def test_multiline_marker(self, matcher):
        """Attributes and content may span several lines"""
        text = '<UFTTDiv\n  className="x"\n  ttid="multi"\n>\n  Hello\r\n  world\n</UFTTDiv>'
        markers = list(matcher.finditer(text))
        assert markers[0].ttid == "multi"
        assert markers[0].content == "Hello world"
        assert markers[0].raw_content == "\n  Hello\r\n  world\n"

    def test_closing_tag_with_trailing_content(self, matcher):
        """Anything after the tag name in the closing tag is ignored"""
        markers = list(matcher.finditer("<UFTT>Hi</UFTT >"))
        assert markers[0].content == "Hi"

    def test_markers_in_order(self, matcher):
        """Markers are returned in order of appearance"""
        text = '<p><UFTT ttid="a">A</UFTT> and <UFTTSpan ttid="b">B</UFTTSpan></p>\n<UFTTHtml>C</UFTTHtml>'
        assert [m.ttid for m in matcher.finditer(text)] == ["a", "b", None]
        assert [m.content for m in matcher.finditer(text)] == ["A", "B", "C"]

    def test_same_tag_nesting_ends_at_first_closing_tag(self, matcher):
        """Nested markers with the same tag end at the first closing tag"""
        markers = list(matcher.finditer("<UFTT>a <UFTT>b</UFTT> c</UFTT>"))
        assert len(markers) == 1
        assert markers[0].content == "a <UFTT>b"

    def test_tag_name_is_not_a_prefix_match(self, matcher):
        """UFTT does not match the opening of another tag starting with UFTT"""
        markers = list(matcher.finditer("<UFTTSpan>x</UFTTSpan><UFTTOther>y</UFTTOther>"))
        assert [m.tag for m in markers] == ["UFTTSpan"]

    def test_self_closing_marker_is_ignored(self, matcher):
        """Self-closing tags carry no content and are skipped"""
        markers = list(matcher.finditer('<UFTT ttid="a" /> <UFTT ttid="b">B</UFTT>'))
        assert [m.ttid for m in markers] == ["b"]

    def test_quoted_attribute_may_contain_angle_bracket(self, matcher):
        """A > inside a quoted attribute value does not end the opening tag"""
        markers = list(matcher.finditer('<UFTT title="a > b" ttid="q">Q</UFTT>'))
        assert markers[0].ttid == "q"
        assert markers[0].content == "Q"

    def test_apostrophe_in_attribute_expression(self, matcher):
        """An unpaired apostrophe inside a JSX expression does not hide the marker"""
        text = (
            "<UFTT ttid=\"a\" title={x ? 'it' : `can't`}>One</UFTT>\n"
            "<UFTT ttid=\"b\" {.../* don't */ props}>Two</UFTT>\n"
            "<p>don't</p>"
        )
        assert [(m.ttid, m.content) for m in matcher.finditer(text)] == [("a", "One"), ("b", "Two")]

    def test_prefixed_ttid_attribute_is_not_an_id(self, matcher):
        """Only the ttid attribute itself provides the id"""
        markers = list(matcher.finditer('<UFTT data-ttid="no">Yes</UFTT>'))
        assert markers[0].ttid is None

    def test_empty_ttid_and_content(self, matcher):
        """Empty values are reported as found"""
        markers = list(matcher.finditer('<UFTT ttid="">x</UFTT><UFTT ttid="e"></UFTT>'))
        assert markers[0].ttid == ""
        assert markers[1].ttid == "e"
        assert markers[1].content == ""

    def test_custom_tags(self):
        """Only the configured tags are recognized"""
        custom = MarkerMatcher(["Trans"])
        markers = list(custom.finditer("<Trans>Hi</Trans><UFTT>No</UFTT>"))
        assert [m.content for m in markers] == ["Hi"]

    def test_rescan_is_deterministic(self, matcher):
        """Scanning the same text twice gives the same markers"""
        text = '<UFTT ttid="a">A</UFTT><UFTT>B</UFTT>'
        assert list(matcher.finditer(text)) == list(matcher.finditer(text))

    def test_empty_tag_list_fails(self):
        """An empty tag list is a configuration error"""
        with pytest.raises(ConfigurationError):
            MarkerMatcher([])

    def test_pattern_is_reused_for_same_tags(self):
        """The pattern is only rebuilt for a different tag list"""
        assert compile_marker_pattern(("A", "B")) is compile_marker_pattern(("A", "B"))
        assert compile_marker_pattern(("A",)) is not compile_marker_pattern(("A", "B"))


class TestNormalizeContent:
    """Tests for normalize_content function"""

    def test_newlines_become_spaces(self):
        assert normalize_content("Hello\r\n  world\n") == "Hello world"

    def test_whitespace_runs_collapse(self):
        assert normalize_content("  \t a \t  b  ") == "a b"

    def test_empty_and_blank(self):
        assert normalize_content("") == ""
        assert normalize_content("\n\n  ") == ""

    def test_carriage_return_is_removed(self):
        """A lone carriage return is dropped, not replaced by a space"""
        assert normalize_content("ab\rcd") == "abcd"
