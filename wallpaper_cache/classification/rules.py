"""
Ratio threshold tables and the helpers that apply them.

Two tables exist on purpose: one buckets measured image ratios for the index,
the other buckets a client's requested screen size. See config.py.
"""
import logging
from typing import Optional

from .. import config
from ..models import RatioCategory


def round_ratio(width: float, height: float) -> float:
    return round(width / height, 2)


def classify_measured_ratio(aspect_ratio: float) -> RatioCategory:
    """Buckets an image's width/height ratio using the indexing table."""
    for category, low, high in config.INDEX_RATIO_THRESHOLDS:
        if low <= aspect_ratio < high:
            return category
    # Only reachable for negative or NaN ratios
    return config.INDEX_RATIO_THRESHOLDS[-1][0]


def canonical_ratio(category) -> float:
    try:
        return config.CANONICAL_RATIOS[RatioCategory(category)]
    except ValueError:
        return config.FALLBACK_RATIO


def classify_requested_resolution(width: Optional[float], height: Optional[float]) -> RatioCategory:
    """Maps a requested screen size to the category to serve."""
    try:
        valid = width is not None and height is not None and width > 0 and height > 0
    except TypeError:
        valid = False
    if not valid:
        logging.warning(f"Invalid resolution {width}x{height}, using {config.FALLBACK_CATEGORY.value}")
        return config.FALLBACK_CATEGORY

    aspect_ratio = width / height
    for category, low in config.REQUEST_RATIO_THRESHOLDS:
        if aspect_ratio >= low:
            return category
    return config.REQUEST_DEFAULT_CATEGORY


def classify_user_agent(user_agent: Optional[str]) -> RatioCategory:
    """Guesses a screen category when the client sent no resolution."""
    ua = (user_agent or "").lower()
    if config.MOBILE_UA_PATTERN.search(ua):
        # Tablets are close to 4:3, phones are held upright
        if config.TABLET_UA_PATTERN.search(ua):
            return RatioCategory.STANDARD
        return RatioCategory.PORTRAIT
    if config.ULTRAWIDE_UA_PATTERN.search(ua):
        return RatioCategory.ULTRAWIDE
    return config.FALLBACK_CATEGORY
