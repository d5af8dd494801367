"""Google SERP parser unit tests"""
import pytest

from src.crawlers.google.parsing import (
    GoogleResultParser,
    ParsedResult,
    ResultType,
    normalize_result_url,
    sanitize_html,
)
from tests.conftest import organic_block, serp_document


@pytest.fixture
def parser() -> GoogleResultParser:
    return GoogleResultParser()


class TestParseEmptyAndMalformed:
    """Never raises: empty / junk input gives an empty result"""

    @pytest.mark.parametrize("html", ["", "   ", "\n\t"])
    def test_blank_input(self, parser, html):
        result = parser.parse(html)
        assert result.is_empty
        assert result.organic_results == []
        assert result.featured_snippet is None
        assert result.total_ads == 0
        assert result.total_links == 0

    def test_malformed_markup(self, parser):
        result = parser.parse("<div class='g'><h3>Broken <a href='https://x.io'")
        assert isinstance(result.organic_results, list)

    def test_page_without_results(self, parser):
        result = parser.parse("<html><body><p>Our systems have detected unusual traffic</p></body></html>")
        assert result.is_empty
        assert result.result_count == 0


class TestOrganicResults:

    def test_document_order_positions(self, parser):
        result = parser.parse(serp_document(organic_count=3))

        assert [r.position for r in result.organic_results] == [1, 2, 3]
        assert [r.title for r in result.organic_results] == ["Result 1", "Result 2", "Result 3"]
        assert [r.url for r in result.organic_results] == [
            "https://example.com/1",
            "https://example.com/2",
            "https://example.com/3",
        ]
        assert all(r.type == ResultType.ORGANIC for r in result.organic_results)
        assert result.organic_results[0].snippet == "Snippet number 1"

    def test_redirect_link_resolved(self, parser):
        html = (
            '<div class="g"><a href="/url?q=https://target.example/page&sa=U&ved=abc">'
            "<h3>Target</h3></a></div>"
        )
        result = parser.parse(html)
        assert result.organic_results[0].url == "https://target.example/page"

    def test_container_without_title_and_link_skipped(self, parser):
        html = '<div class="g"><span>nothing useful</span></div>' + organic_block("Kept", "https://kept.example")
        result = parser.parse(html)

        assert len(result.organic_results) == 1
        assert result.organic_results[0].title == "Kept"
        assert result.organic_results[0].position == 1

    def test_title_only_container_kept(self, parser):
        result = parser.parse('<div class="g"><h3>Only a title</h3></div>')

        assert len(result.organic_results) == 1
        assert result.organic_results[0].url is None

    def test_nested_containers_counted_once(self, parser):
        inner = organic_block("Inner", "https://inner.example")
        html = f'<div jscontroller="abc">{inner}</div>'
        result = parser.parse(html)

        assert len(result.organic_results) == 1
        assert result.organic_results[0].title == "Inner"

    def test_nested_widget_keeps_container(self, parser):
        html = (
            '<div class="g"><a href="https://example.com" ping><h3>T</h3></a>'
            '<div class="VwiC3b">S</div>'
            '<div jscontroller="abc"><span role="button">About</span></div></div>'
        )
        result = parser.parse(html)

        assert len(result.organic_results) == 1
        assert result.organic_results[0].title == "T"
        assert result.organic_results[0].url == "https://example.com"
        assert result.organic_results[0].snippet == "S"

    def test_wrapper_of_several_results_dropped(self, parser):
        html = (
            '<div jscontroller="wrap">'
            + organic_block("First", "https://first.example")
            + organic_block("Second", "https://second.example", extra='<div jscontroller="menu"><span>More</span></div>')
            + "</div>"
        )
        result = parser.parse(html)

        assert [r.title for r in result.organic_results] == ["First", "Second"]
        assert [r.position for r in result.organic_results] == [1, 2]

    def test_metadata_extracted(self, parser):
        html = organic_block(
            "Dated", "https://dated.example", "Body",
            extra='<span class="LEwnzc">Mar 3, 2024</span><span class="yi40Hd">4.5</span>',
        )
        result = parser.parse(html)

        assert result.organic_results[0].metadata == {"date": "Mar 3, 2024", "rating": "4.5"}

    def test_whitespace_collapsed(self, parser):
        result = parser.parse(organic_block("  Spaced \n   Title ", "https://s.example"))
        assert result.organic_results[0].title == "Spaced Title"


class TestFeaturedSnippet:

    def test_featured_position_zero(self, parser, serp_html):
        result = parser.parse(serp_html)

        featured = result.featured_snippet
        assert featured is not None
        assert featured.position == 0
        assert featured.type == ResultType.FEATURED_SNIPPET
        assert featured.title == "What is Python"
        assert featured.snippet == "Python is a programming language."
        assert featured.url == "https://python.org/about"

    def test_featured_not_counted_as_organic(self, parser, serp_html):
        result = parser.parse(serp_html)

        assert len(result.organic_results) == 3
        assert result.organic_results[0].position == 1
        assert result.result_count == 4
        assert result.results[0] is result.featured_snippet

    def test_featured_inside_organic_container(self, parser):
        html = (
            '<div class="g"><div class="xpdopen"><h3>Answer</h3>'
            '<span class="hgKElc">42</span></div></div>'
            + organic_block("Organic", "https://o.example")
        )
        result = parser.parse(html)

        assert result.featured_snippet is not None
        assert [r.title for r in result.organic_results] == ["Organic"]

    def test_featured_only_page_is_not_empty(self, parser):
        result = parser.parse('<div class="xpdopen"><span class="hgKElc">Just an answer</span></div>')

        assert not result.is_empty
        assert result.organic_results == []


class TestCounts:

    def test_ads_and_links(self, parser, serp_html):
        result = parser.parse(serp_html)

        assert result.total_ads == 2
        # featured 1 + ads 2 + organic 3
        assert result.total_links == 6

    def test_ads_without_organic(self, parser):
        result = parser.parse(serp_document(organic_count=0, ads=3))

        assert result.total_ads == 3
        assert result.is_empty


class TestSnapshot:

    def test_script_style_and_handlers_removed(self, parser):
        html = serp_document(
            organic_count=1,
            extra='<img src="x.png" onerror="alert(1)"><button onclick=\'go()\'>b</button>',
        )
        snapshot = parser.parse(html).html_snapshot

        assert "<script" not in snapshot
        assert "<style" not in snapshot
        assert "onerror" not in snapshot
        assert "onclick" not in snapshot
        assert "Result 1" in snapshot

    def test_sanitize_html_empty(self):
        assert sanitize_html("") == ""


class TestNormalizeResultUrl:

    @pytest.mark.parametrize("href, expected", [
        ("/url?q=https://a.example/x&sa=U", "https://a.example/x"),
        ("https://www.google.com/url?url=https://b.example/", "https://b.example/"),
        ("https://plain.example/url?q=keep", "https://plain.example/url?q=keep"),
        ("https://plain.example/page", "https://plain.example/page"),
        ("/url?sa=U", "/url?sa=U"),
        ("", None),
        (None, None),
    ])
    def test_normalize(self, href, expected):
        assert normalize_result_url(href) == expected


class TestSerialization:

    def test_to_dict_omits_empty_optional_fields(self):
        entry = ParsedResult(position=1, type=ResultType.ORGANIC, title="T", url="https://t.example")
        assert entry.to_dict() == {
            "position": 1,
            "type": "organic",
            "title": "T",
            "url": "https://t.example",
        }

    def test_parse_result_to_dict(self, parser, serp_html):
        data = parser.parse(serp_html).to_dict()

        assert data["featured_snippet"]["position"] == 0
        assert len(data["organic_results"]) == 3
        assert data["total_ads"] == 2
        assert "html_snapshot" not in data


class TestSingleContainerRoundTrip:

    def test_only_container(self, parser):
        html = (
            '<html><body><div class="g"><a href="https://example.com"><h3>T</h3></a>'
            '<div class="VwiC3b">S</div></div></body></html>'
        )
        result = parser.parse(html)

        assert [r.to_dict() for r in result.organic_results] == [{
            "position": 1,
            "type": "organic",
            "title": "T",
            "url": "https://example.com",
            "snippet": "S",
        }]
