"""
Configuration constants for the wallpaper ratio cache.
"""
import os
import re
from pathlib import Path

from .models import RatioCategory

# --- File Type Definitions ---
SUPPORTED_EXTS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}

# --- Defaults (overridable from the environment) ---
DEFAULT_DB_NAME = "wallpaper_cache.db"
WALLPAPER_DIR = Path(os.environ.get("WALLPAPER_DIR", "wallpaper")).expanduser()
DB_PATH = Path(os.environ.get("WALLPAPER_CACHE_DB", DEFAULT_DB_NAME)).expanduser()

# --- Ratio Tables ---
# Representative ratio per category, used for scoring and keyword matches
CANONICAL_RATIOS = {
    RatioCategory.ULTRAWIDE: 2.39,
    RatioCategory.WIDESCREEN: 1.78,
    RatioCategory.STANDARD: 1.33,
    RatioCategory.PORTRAIT: 0.56,
    RatioCategory.SQUARE: 1.0,
}

# Indexing: half-open [min, max) ranges for measured image ratios
INDEX_RATIO_THRESHOLDS = [
    (RatioCategory.ULTRAWIDE, 2.3, float('inf')),
    (RatioCategory.WIDESCREEN, 1.7, 2.3),
    (RatioCategory.STANDARD, 1.2, 1.7),
    (RatioCategory.PORTRAIT, 0.5, 1.2),
    (RatioCategory.SQUARE, 0.0, 0.5),
]

# Requests: first lower bound the requested screen ratio reaches wins.
# Kept separate from the indexing table; the two must be tuned independently.
REQUEST_RATIO_THRESHOLDS = [
    (RatioCategory.ULTRAWIDE, 2.3),
    (RatioCategory.WIDESCREEN, 1.7),
    (RatioCategory.STANDARD, 1.2),
    (RatioCategory.PORTRAIT, 0.5),
]
REQUEST_DEFAULT_CATEGORY = RatioCategory.SQUARE

# Used for undecodable files, invalid requests and the last-resort query
FALLBACK_CATEGORY = RatioCategory.WIDESCREEN
FALLBACK_RATIO = 1.78

# --- Filename Heuristics ---
RESOLUTION_PATTERN = re.compile(r'(\d{3,5})[x_\-](\d{3,5})')
MIN_FILENAME_DIMENSION = 100
MAX_FILENAME_DIMENSION = 8000

# Checked in order; the first matching keyword decides the category
RATIO_KEYWORD_PATTERNS = [
    (RatioCategory.ULTRAWIDE, re.compile(r'(?:ultra-?wide|21[:\-_]9|3440x1440|2560x1080)')),
    (RatioCategory.WIDESCREEN, re.compile(r'(?:wide-?screen|16[:\-_]9|16[:\-_]10|1920x1080|2560x1440)')),
    (RatioCategory.STANDARD, re.compile(r'(?:standard|4[:\-_]3|5[:\-_]4|1024x768|1280x1024)')),
    (RatioCategory.PORTRAIT, re.compile(r'(?:portrait|vertical|mobile|9[:\-_]16|1080x1920)')),
    (RatioCategory.SQUARE, re.compile(r'(?:square|1[:\-_]1|1080x1080)')),
]

# --- User-Agent Hints ---
MOBILE_UA_PATTERN = re.compile(r'mobile|android|iphone|ipad|phone|tablet')
TABLET_UA_PATTERN = re.compile(r'ipad')
ULTRAWIDE_UA_PATTERN = re.compile(r'ultrawide|3440x1440|2560x1080')

# --- Pixel Metadata ---
EXIF_ORIENTATION_TAG = 0x0112
# Orientations 5-8 are stored rotated by 90 degrees
EXIF_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}

# --- Scored Fallback Search ---
SCORE_MAX = 100
SCORE_SLOPE = 30
CLOSE_MATCH_SCORE = 70
FALLBACK_MATCH_SCORE = 40
