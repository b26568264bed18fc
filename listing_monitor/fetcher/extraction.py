"""Listing extraction shared by every fetch strategy.

The selector lists below are a static priority order: configured hints
first, then web-component tags, then class-pattern heuristics, then
generic fallbacks. The first selector that matches any element wins.
The browser strategy evaluates ``EXTRACTION_SCRIPT`` inside the page with
the same lists and regexes, then feeds the raw result through
``build_extracted_page`` so both strategies produce identical signatures.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from listing_monitor.errors import BotChallengeError, ExtractionError
from listing_monitor.models.data_models import ListingSignature


DEFAULT_SELECTORS: List[str] = [
    # Web components
    "athome-csite-pc-part-rent-business-other-bukken-card",
    "athome-search-result-list-item",
    "athome-buy-other-object-list-item",
    "athome-object-item",
    # Class-pattern heuristics
    '[data-testid*="property"]',
    '[class*="PropertyCard"]',
    ".item-cassette",
    ".property-list-item",
    '[class*="bukken"]',
    '[class*="property"]',
    'article[class*="item"]',
    'div[class*="result-item"]',
    '[class*="item"]',
    # Generic fallbacks
    "[data-property]",
    "[data-item]",
    "article",
]

TITLE_SELECTORS: List[str] = [
    '[class*="title"]',
    '[class*="Title"]',
    '[class*="name"]',
    "h2",
    "h3",
    "a",
]

PRICE_SELECTORS: List[str] = [
    '[class*="price"]',
    '[class*="Price"]',
    '[class*="kakaku"]',
]

LOCATION_SELECTORS: List[str] = [
    '[class*="address"]',
    '[class*="Address"]',
    '[class*="location"]',
    '[class*="Location"]',
    '[class*="shozaichi"]',
]

PRICE_PATTERN = r"[0-9,]+(?:\.[0-9]+)?万円|[0-9,]+円"
LOCATION_PATTERN = (
    r"[^\s0-9]{2,3}[都道府県][^\s0-9]{1,20}?[市区町村]"
    r"|[^\s0-9]{1,6}[市区][^\s0-9]{1,10}?[区町]"
)

_PRICE_RE = re.compile(PRICE_PATTERN)
_LOCATION_RE = re.compile(LOCATION_PATTERN)

TITLE_CHALLENGE_MARKERS = ("認証",)

BODY_CHALLENGE_MARKERS = (
    "認証にご協力ください",
    "cf-browser-verification",
    "_cf_chl_opt",
    "checking your browser before accessing",
    "please wait while we verify your browser",
)


@dataclass
class ExtractedPage:
    """Listings and content hash extracted from one page."""
    listings: List[ListingSignature]
    content_hash: str
    matched_selector: str
    element_count: int


def selector_candidates(hints: Optional[Iterable[str]] = None) -> List[str]:
    """Target hints first, then the default priority list, without duplicates."""
    ordered: List[str] = []
    for selector in list(hints or []) + DEFAULT_SELECTORS:
        if selector and selector not in ordered:
            ordered.append(selector)
    return ordered


def normalize_text(text: str) -> str:
    return " ".join(text.split())


def content_hash(texts: Sequence[str]) -> str:
    """Order-stable md5 over the text of every matched element."""
    return hashlib.md5("|".join(texts).encode("utf-8")).hexdigest()


def is_challenge_page(title: str, body: str) -> bool:
    """Check whether a verification / challenge page was served."""
    if any(marker in title for marker in TITLE_CHALLENGE_MARKERS):
        return True

    body_lower = body.lower()
    if any(marker in body_lower for marker in BODY_CHALLENGE_MARKERS):
        return True

    # Cloudflare interstitial title
    return "just a moment" in body_lower and (
        "cloudflare" in body_lower or "_cf_" in body_lower
    )


def check_html_for_challenge(html: str, url: str = "") -> None:
    """Raise BotChallengeError when the HTML is a challenge page."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    if is_challenge_page(title, html):
        raise BotChallengeError(f"Verification page served for {url or 'page'}")


def parse_listing(title: str, price: str, location: str, text: str) -> Optional[ListingSignature]:
    """
    Build a signature from sub-selector values, falling back to the raw text.

    Returns None for items without both a title and a price.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    title = normalize_text(title) or (lines[0] if lines else "")

    if not price:
        match = _PRICE_RE.search(text)
        price = match.group(0) if match else ""
    if not location:
        match = _LOCATION_RE.search(text)
        location = match.group(0) if match else ""

    price = normalize_text(price)
    location = normalize_text(location)
    if not title or not price:
        return None
    return ListingSignature(title=title, price=price, location=location)


def build_extracted_page(raw: Dict[str, Any], max_listings: int = 3) -> ExtractedPage:
    """
    Turn a raw extraction result into signatures and a content hash.

    ``raw`` has the shape produced by ``EXTRACTION_SCRIPT``:
    ``{"selector": str | None, "texts": [str], "items": [{title, price, location, text}]}``.
    """
    selector = raw.get("selector")
    texts = [normalize_text(t) for t in raw.get("texts") or []]
    if not selector or not texts:
        raise ExtractionError("No listing elements matched any selector")

    listings: List[ListingSignature] = []
    for item in (raw.get("items") or [])[:max_listings]:
        signature = parse_listing(
            item.get("title") or "",
            item.get("price") or "",
            item.get("location") or "",
            item.get("text") or "",
        )
        if signature is not None:
            listings.append(signature)

    if not listings:
        raise ExtractionError(f"Selector {selector!r} matched but no listing had a title and price")

    return ExtractedPage(
        listings=listings,
        content_hash=content_hash(texts),
        matched_selector=selector,
        element_count=len(texts),
    )


def _first_text(element: Tag, selectors: Sequence[str]) -> str:
    for selector in selectors:
        found = element.select_one(selector)
        if found is not None:
            text = found.get_text(" ", strip=True)
            if text:
                return text
    return ""


def extract_listings(
    html: str,
    hints: Optional[Iterable[str]] = None,
    max_listings: int = 3
) -> ExtractedPage:
    """
    Extract listings from static HTML.

    Args:
        html: Page markup
        hints: Target-specific selectors tried before the defaults
        max_listings: Number of leading items turned into signatures

    Returns:
        ExtractedPage for the first matching selector

    Raises:
        ExtractionError: If no selector matches or no item is valid
    """
    soup = BeautifulSoup(html, "html.parser")

    for selector in selector_candidates(hints):
        try:
            elements = soup.select(selector)
        except SelectorSyntaxError:
            # A malformed hint is skipped, matching the in-page script
            continue
        if not elements:
            continue

        items = []
        for element in elements[:max_listings]:
            items.append({
                "title": _first_text(element, TITLE_SELECTORS),
                "price": _first_text(element, PRICE_SELECTORS),
                "location": _first_text(element, LOCATION_SELECTORS),
                "text": element.get_text("\n", strip=True),
            })
        raw = {
            "selector": selector,
            "texts": [element.get_text(" ", strip=True) for element in elements],
            "items": items,
        }
        return build_extracted_page(raw, max_listings=max_listings)

    raise ExtractionError("No listing elements matched any selector")


# Runs inside the page via page.evaluate(EXTRACTION_SCRIPT, args).
EXTRACTION_SCRIPT = """
(args) => {
  const firstText = (el, selectors) => {
    for (const sel of selectors) {
      const found = el.querySelector(sel);
      if (found) {
        const text = (found.innerText || found.textContent || '').replace(/\\s+/g, ' ').trim();
        if (text) return text;
      }
    }
    return '';
  };
  for (const selector of args.selectors) {
    let elements = [];
    try {
      elements = Array.from(document.querySelectorAll(selector));
    } catch (e) {
      continue;
    }
    if (elements.length === 0) continue;
    return {
      selector,
      texts: elements.map(el => (el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim()),
      items: elements.slice(0, args.maxListings).map(el => ({
        title: firstText(el, args.titleSelectors),
        price: firstText(el, args.priceSelectors),
        location: firstText(el, args.locationSelectors),
        text: el.innerText || el.textContent || '',
      })),
    };
  }
  return { selector: null, texts: [], items: [] };
}
"""


def script_arguments(hints: Optional[Iterable[str]] = None, max_listings: int = 3) -> Dict[str, Any]:
    """Arguments passed to ``EXTRACTION_SCRIPT``."""
    return {
        "selectors": selector_candidates(hints),
        "titleSelectors": TITLE_SELECTORS,
        "priceSelectors": PRICE_SELECTORS,
        "locationSelectors": LOCATION_SELECTORS,
        "maxListings": max_listings,
    }
