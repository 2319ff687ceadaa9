"""
Listing Field Extractor
=======================
Turns a loaded detail page into a ``ListingRecord``.

The rendered DOM is snapshotted once (``page.content()``) and parsed with
BeautifulSoup; every field is then resolved by an ordered list of
strategies, first non-empty result wins:

    1. structured attributes   ([data-testid=...], [itemprop=...])
    2. semantic HTML           (h1, address, section > h2 headings)
    3. visible-text patterns   ("€", "m²", "pièces", label/value pairs)

A field whose strategies all come back empty is None; a missing field
never fails the record.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from .models import ListingRecord
from .utils import (
    clean_text,
    extract_listing_id,
    parse_area,
    parse_integer,
    parse_price,
)

logger = logging.getLogger(__name__)

Strategy = Callable[[BeautifulSoup], Optional[str]]

DETAIL_READY_SELECTOR = "main, #app"

_SKIP_TAGS = frozenset(["script", "style", "noscript", "template"])
_LABEL_TAGS = ["dt", "strong", "span", "div"]
_MAX_LABEL_LEN = 40

_DPE_RE = re.compile(r"(?i:DPE)\s*:?\s*([A-G]\s*\d+|[A-G])\b")
_GES_RE = re.compile(r"(?i:GES)\s*:?\s*([A-G]\s*\d+|[A-G])\b")


# ---------------------------------------------------------------------------
# Strategy combinators
# ---------------------------------------------------------------------------

def first_success(soup: BeautifulSoup, strategies: Sequence[Strategy]) -> Optional[str]:
    """Run strategies in order; first cleaned, non-empty text wins."""
    for strategy in strategies:
        try:
            value = clean_text(strategy(soup))
        except Exception as e:
            logger.debug(f"[EXTRACT] Strategy {getattr(strategy, '__name__', strategy)} failed: {e}")
            continue
        if value:
            return value
    return None


def _text(el: Optional[Tag]) -> Optional[str]:
    if el is None:
        return None
    return el.get_text(" ", strip=True)


def _root(soup: BeautifulSoup) -> Tag:
    return soup.body or soup


def by_selector(css: str) -> Strategy:
    def strategy(soup):
        return _text(soup.select_one(css))
    strategy.__name__ = f"by_selector({css})"
    return strategy


def _smallest_match(root: Tag, pattern: re.Pattern, tag: Optional[str] = None
                    ) -> Optional[Tuple[Tag, re.Match]]:
    """Innermost element (or first ``tag`` element) whose text matches."""
    for el in root.find_all(tag or True):
        if el.name in _SKIP_TAGS:
            continue
        match = pattern.search(el.get_text(" ", strip=True))
        if not match:
            continue
        if tag is None and any(
            pattern.search(child.get_text(" ", strip=True))
            for child in el.find_all(True, recursive=False)
            if child.name not in _SKIP_TAGS
        ):
            continue
        return el, match
    return None


def by_text_match(pattern: str, flags: int = 0, tag: Optional[str] = None) -> Strategy:
    """The matched substring of the first element whose visible text matches."""
    regex = re.compile(pattern, flags)

    def strategy(soup):
        found = _smallest_match(_root(soup), regex, tag)
        return found[1].group(0) if found else None
    strategy.__name__ = f"by_text_match({pattern})"
    return strategy


def find_section(soup: BeautifulSoup, heading: str) -> Optional[Tag]:
    """``<section>`` whose ``<h2>`` contains ``heading`` (case-insensitive)."""
    needle = heading.lower()
    for section in soup.find_all("section"):
        h2 = section.find("h2")
        if h2 is not None and needle in h2.get_text(" ", strip=True).lower():
            return section
    return None


def by_section(heading: str, inner: str) -> Strategy:
    def strategy(soup):
        section = find_section(soup, heading)
        return _text(section.select_one(inner)) if section is not None else None
    strategy.__name__ = f"by_section({heading}, {inner})"
    return strategy


def _own_text(el: Tag) -> str:
    return " ".join(s.strip() for s in el.find_all(string=True, recursive=False) if s.strip())


def by_label(*patterns: str) -> Strategy:
    """
    Label/value pairing for fields without a dedicated container.

    A short label-like element matching one of ``patterns`` yields its next
    sibling's text, or else its parent's text with the label removed.
    """
    regexes = [re.compile(p, re.IGNORECASE) for p in patterns]

    def strategy(soup):
        for el in _root(soup).find_all(_LABEL_TAGS):
            own = _own_text(el)
            if not own or len(own) > _MAX_LABEL_LEN:
                continue
            if not any(r.search(own) for r in regexes):
                continue

            label = el.get_text(" ", strip=True)
            sibling = el.find_next_sibling()
            if sibling is not None:
                value = sibling.get_text(" ", strip=True)
                if value:
                    return value

            parent = el.parent
            if parent is not None and parent.name not in ("body", "[document]"):
                parent_text = parent.get_text(" ", strip=True)
                if parent_text and parent_text != label:
                    return parent_text.replace(label, "", 1).strip().lstrip(":").strip()
        return None
    strategy.__name__ = f"by_label({', '.join(patterns)})"
    return strategy


# ---------------------------------------------------------------------------
# Field strategy chains
# ---------------------------------------------------------------------------

_PRICE_PATTERN = r"[0-9][0-9\s.,]*€(?!\s*/\s*m)"

TITLE = [by_selector("h1")]

PRICE = [
    by_selector('[data-testid="sl-price"]'),
    by_selector('[data-test="price"]'),
    by_selector('[itemprop="price"]'),
    by_text_match(_PRICE_PATTERN, tag="span"),
    by_text_match(_PRICE_PATTERN),
]

PRICE_PER_SQM = [by_text_match(r"[0-9][0-9\s.,]*€\s*/\s*m²", re.IGNORECASE)]

AREA = [by_text_match(r"[0-9]+(?:[.,][0-9]+)?\s*m²", re.IGNORECASE)]

ROOMS = [by_text_match(r"[0-9]+\s*pi[èe]ce", re.IGNORECASE)]

BEDROOMS = [by_text_match(r"[0-9]+\s*chambre", re.IGNORECASE)]

FLOOR = [by_label(r"Étages?", r"Niveau")]

ADDRESS = [
    by_selector("address"),
    by_section("Localisation", "p"),
    by_label(r"Adresse", r"Quartier"),
]

AGENCY = [
    by_section("Contact", "h3"),
    by_section("Agence", "h3"),
    by_label(r"Agence", r"Contact"),
]

REFERENCE = [by_label(r"Référence", r"Identifiant")]

FEATURE_HEADINGS = ["Caractéristiques", "Équipements"]


# ---------------------------------------------------------------------------
# Multi-value / regex fields
# ---------------------------------------------------------------------------

def extract_features(soup: BeautifulSoup) -> List[str]:
    for heading in FEATURE_HEADINGS:
        section = find_section(soup, heading)
        if section is None:
            continue
        items = [clean_text(li.get_text(" ", strip=True)) for li in section.find_all("li")]
        items = [item for item in items if item]
        if items:
            return items
    return []


def extract_description(soup: BeautifulSoup) -> Optional[str]:
    section = find_section(soup, "Description")
    if section is not None:
        paragraphs = [p.get_text(" ", strip=True) for p in section.find_all("p")]
        if paragraphs:
            text = clean_text("\n".join(paragraphs))
            if text:
                return text
    return first_success(soup, [by_selector('[data-testid="sl-description"]')])


def extract_energy(soup: BeautifulSoup) -> Tuple[Optional[str], Optional[str]]:
    """(DPE, GES) codes from the energy section, else from the whole page."""
    section = find_section(soup, "Performance énergétique")
    source = section if section is not None else _root(soup)
    text = source.get_text(" ", strip=True)

    dpe = _DPE_RE.search(text)
    ges = _GES_RE.search(text)
    return (
        clean_text(dpe.group(1)) if dpe else None,
        clean_text(ges.group(1)) if ges else None,
    )


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class FieldExtractor:
    """
    Builds one ``ListingRecord`` per detail page.

    Usage::

        extractor = FieldExtractor()
        record = await extractor.extract(page, url)       # live page
        record = extractor.extract_from_html(html, url)   # snapshot
    """

    parser = "lxml"

    async def extract(self, page, url: str) -> ListingRecord:
        html = await page.content()
        return self.extract_from_html(html, url)

    def extract_from_html(self, html: str, url: str) -> ListingRecord:
        soup = BeautifulSoup(html or "", self.parser)
        dpe, ges = extract_energy(soup)

        record = ListingRecord(
            id=extract_listing_id(url),
            url=url,
            title=first_success(soup, TITLE),
            price=parse_price(first_success(soup, PRICE)),
            price_per_sqm=parse_price(first_success(soup, PRICE_PER_SQM)),
            area_sqm=parse_area(first_success(soup, AREA)),
            rooms=parse_integer(first_success(soup, ROOMS)),
            bedrooms=parse_integer(first_success(soup, BEDROOMS)),
            floor=first_success(soup, FLOOR),
            address=first_success(soup, ADDRESS),
            dpe=dpe,
            ges=ges,
            features=extract_features(soup),
            description=extract_description(soup),
            agency=first_success(soup, AGENCY),
            reference=first_success(soup, REFERENCE),
        )
        logger.debug(f"[EXTRACT] {url} → title={record.title!r} price={record.price}")
        return record
