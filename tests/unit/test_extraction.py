"""Unit tests for listing extraction."""

import pytest

from listing_monitor.errors import BotChallengeError, ExtractionError
from listing_monitor.fetcher.extraction import (
    DEFAULT_SELECTORS,
    build_extracted_page,
    check_html_for_challenge,
    content_hash,
    extract_listings,
    is_challenge_page,
    parse_listing,
    script_arguments,
    selector_candidates,
)
from listing_monitor.mock_servers.app import CHALLENGE_HTML, render_listing_page


LISTINGS = [
    {"title": "中区 3LDK", "price": "2,980万円", "location": "広島市中区"},
    {"title": "南区 土地", "price": "1,500万円", "location": "広島市南区"},
    {"title": "西区 戸建", "price": "3,200万円", "location": "広島市西区"},
    {"title": "東区 土地", "price": "800万円", "location": "広島市東区"},
    {"title": "安佐南区 戸建", "price": "2,100万円", "location": "広島市安佐南区"},
]


class TestSelectorCandidates:

    def test_hints_come_first(self):
        candidates = selector_candidates([".custom-card"])
        assert candidates[0] == ".custom-card"
        assert candidates[1:] == DEFAULT_SELECTORS

    def test_duplicates_removed(self):
        candidates = selector_candidates(["article", "article"])
        assert candidates.count("article") == 1
        assert candidates[0] == "article"

    def test_script_arguments_carry_priority(self):
        args = script_arguments(["#x"], max_listings=5)
        assert args["selectors"][0] == "#x"
        assert args["maxListings"] == 5


class TestExtractListings:

    def test_web_component_listing_page(self):
        page = extract_listings(render_listing_page(LISTINGS[:3]))

        assert page.matched_selector == "athome-search-result-list-item"
        assert [(s.title, s.price, s.location) for s in page.listings] == [
            ("中区 3LDK", "2,980万円", "広島市中区"),
            ("南区 土地", "1,500万円", "広島市南区"),
            ("西区 戸建", "3,200万円", "広島市西区"),
        ]

    def test_only_leading_items_become_signatures(self):
        page = extract_listings(render_listing_page(LISTINGS), max_listings=3)
        assert len(page.listings) == 3
        assert page.element_count == 5

    def test_hash_covers_every_matched_element(self):
        before = extract_listings(render_listing_page(LISTINGS))
        changed = [dict(item) for item in LISTINGS]
        changed[4]["price"] = "1,900万円"
        after = extract_listings(render_listing_page(changed))

        assert before.listings == after.listings
        assert before.content_hash != after.content_hash

    def test_hash_ignores_markup_outside_listings(self):
        plain = extract_listings(render_listing_page(LISTINGS[:3]))
        bannered = extract_listings(render_listing_page(LISTINGS[:3], banner="セール中"))
        assert plain.content_hash == bannered.content_hash

    def test_hint_selector_wins(self):
        html = render_listing_page(LISTINGS[:2]) + """
        <div class="custom-card"><b class="name">Hinted</b><i class="price">500万円</i></div>
        """
        page = extract_listings(html, hints=[".custom-card"])

        assert page.matched_selector == ".custom-card"
        assert page.listings[0].title == "Hinted"
        assert page.listings[0].price == "500万円"

    def test_malformed_hint_is_skipped(self):
        page = extract_listings(render_listing_page(LISTINGS[:2]), hints=["div[class=broken"])

        assert page.matched_selector == "athome-search-result-list-item"
        assert page.listings[0].title == "中区 3LDK"

    def test_regex_fallback_for_price_and_location(self):
        html = "<html><body><article><h3>Plot</h3><p>土地 1,200万円 広島県広島市中区</p></article></body></html>"

        page = extract_listings(html)

        assert page.matched_selector == "article"
        listing = page.listings[0]
        assert listing.title == "Plot"
        assert listing.price == "1,200万円"
        assert listing.location == "広島県広島市"

    def test_items_without_price_are_dropped(self):
        html = """<html><body>
        <article><h3>No price here</h3></article>
        <article><h3>Priced</h3><span class="price">700万円</span></article>
        </body></html>"""

        page = extract_listings(html)

        assert [s.title for s in page.listings] == ["Priced"]

    def test_no_matching_selector(self):
        with pytest.raises(ExtractionError):
            extract_listings("<html><body><p>nothing</p></body></html>")

    def test_matched_but_nothing_valid(self):
        with pytest.raises(ExtractionError):
            extract_listings("<html><body><article><h3>Title only</h3></article></body></html>")


class TestBuildExtractedPage:

    def test_raw_script_result(self):
        raw = {
            "selector": "athome-object-item",
            "texts": ["A  1000万円", "B 2000万円"],
            "items": [
                {"title": "A", "price": "1000万円", "location": "", "text": "A\n1000万円"},
                {"title": "", "price": "", "location": "", "text": "B\n2000万円\n広島市南区宇品町"},
            ],
        }

        page = build_extracted_page(raw)

        assert [s.key for s in page.listings] == ["A:1000万円:", "B:2000万円:広島市南区宇品町"]
        assert page.content_hash == content_hash(["A 1000万円", "B 2000万円"])

    def test_empty_script_result(self):
        with pytest.raises(ExtractionError):
            build_extracted_page({"selector": None, "texts": [], "items": []})


class TestParseListing:

    def test_title_falls_back_to_first_line(self):
        listing = parse_listing("", "", "", "  First line \nsecond 450万円")
        assert listing.title == "First line"
        assert listing.price == "450万円"

    def test_yen_price_pattern(self):
        assert parse_listing("Room", "", "", "月額 85,000円").price == "85,000円"

    def test_returns_none_without_title(self):
        assert parse_listing("", "100万円", "", "") is None


class TestChallengeDetection:

    def test_verification_title(self):
        with pytest.raises(BotChallengeError):
            check_html_for_challenge(CHALLENGE_HTML, "https://listings.test/")

    def test_listing_page_passes(self):
        check_html_for_challenge(render_listing_page(LISTINGS[:1]))

    @pytest.mark.parametrize("body", [
        "<div id='cf-browser-verification'></div>",
        "<script>window._cf_chl_opt={}</script>",
        "<title>Just a moment...</title> cloudflare",
    ])
    def test_body_markers(self, body):
        assert is_challenge_page("", body) is True

    def test_plain_page_is_not_challenge(self):
        assert is_challenge_page("物件一覧", "<p>Just a moment of your time</p>") is False

    def test_listing_page_with_captcha_form_passes(self):
        html = render_listing_page(LISTINGS[:1]).replace(
            "</body>",
            "<form class='inquiry'><div class='g-recaptcha' data-sitekey='k'></div></form></body>",
        )

        check_html_for_challenge(html, "https://listings.test/")
        assert extract_listings(html).listings[0].title == "中区 3LDK"
