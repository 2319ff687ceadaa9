"""
Utility Functions
URL canonicalization, text cleanup and locale-aware number parsing.
"""

import logging
import math
import re
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse, parse_qsl, urlencode

from .models import ItemReference

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# URL canonicalization
# ---------------------------------------------------------------------------

# Common tracking parameters to remove
TRACKING_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'mc_cid', 'mc_eid', '_ga', '_gid',
}


def canonicalize(href: str, base_url: str = None) -> Optional[ItemReference]:
    """
    Canonical form of an item link, used as its identity.

    Fragment removed, scheme and host lowercased, tracking parameters
    dropped.  Relative links are resolved against ``base_url``.

    Returns:
        The canonical reference, or None for non-http(s) links
    """
    if not href:
        return None

    href = href.strip()
    if href.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:', '#')):
        return None

    if base_url:
        href = urljoin(base_url, href)

    try:
        parsed = urlparse(href)
    except ValueError:
        return None

    if parsed.scheme.lower() not in ('http', 'https') or not parsed.netloc:
        return None

    query = parsed.query
    if query:
        params = [
            (k, v) for k, v in parse_qsl(query, keep_blank_values=True)
            if k.lower() not in TRACKING_PARAMS
        ]
        query = urlencode(params)

    return ItemReference(urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path or '/',
        parsed.params,
        query,
        '',
    )))


def extract_listing_id(url: str) -> Optional[str]:
    """
    Listing id from the URL alone: the digits right before ``.htm``,
    else the first run of digits.
    """
    if not url:
        return None
    match = re.search(r'(\d+)\.htm', url) or re.search(r'(\d+)', url)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Text cleanup
# ---------------------------------------------------------------------------

def clean_text(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace runs and trim; empty becomes None."""
    if not text:
        return None
    normalized = re.sub(r'\s+', ' ', text).strip()
    return normalized or None


# ---------------------------------------------------------------------------
# Locale-aware numbers ("450 000 €", "65,5 m²")
# ---------------------------------------------------------------------------

_NUMBER_RE = re.compile(r'-?[0-9]+(?:\.[0-9]+)?')


def parse_french_number(text: Optional[str]) -> Optional[float]:
    """
    Parse the first number in French-formatted text.

    Non-breaking spaces and every character other than digits, comma,
    dot and minus are stripped; commas are decimal separators.
    """
    if not text:
        return None
    normalized = text.replace('\u00a0', ' ')
    normalized = re.sub(r'[^0-9,.\-]', '', normalized).replace(',', '.')
    match = _NUMBER_RE.search(normalized)
    if not match:
        return None
    return float(match.group(0))


def parse_price(text: Optional[str]) -> Optional[int]:
    """Price in whole currency units, rounded half up."""
    value = parse_french_number(text)
    if value is None:
        return None
    return int(math.floor(value + 0.5))


def parse_area(text: Optional[str]) -> Optional[float]:
    return parse_french_number(text)


def parse_integer(text: Optional[str]) -> Optional[int]:
    """First run of digits as an integer."""
    if not text:
        return None
    match = re.search(r'[0-9]+', text.replace('\u00a0', ' '))
    return int(match.group(0)) if match else None
