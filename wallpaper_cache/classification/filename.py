from typing import Optional

from .. import config
from ..models import Classification, ClassificationSource
from .rules import classify_measured_ratio, round_ratio


class FilenameClassifier:
    """
    Derives a ratio category from a file name alone, without touching the file.

    Strategies, in order:
      - Explicit resolution ("wall_3440x1440.jpg"): ratio measured from the numbers.
      - Ratio keyword ("sunset-21-9.png", "portrait_01.jpg"): category assigned
        directly, ratio set to the category's canonical value.
    """

    def classify(self, file_name: str) -> Optional[Classification]:
        name = file_name.lower()
        return self._from_resolution(name) or self._from_keyword(name)

    def _from_resolution(self, name: str) -> Optional[Classification]:
        match = config.RESOLUTION_PATTERN.search(name)
        if not match:
            return None

        width, height = int(match.group(1)), int(match.group(2))
        bounds = range(config.MIN_FILENAME_DIMENSION, config.MAX_FILENAME_DIMENSION + 1)
        if width not in bounds or height not in bounds:
            return None

        aspect_ratio = round_ratio(width, height)
        return Classification(
            category=classify_measured_ratio(aspect_ratio),
            aspect_ratio=aspect_ratio,
            source=ClassificationSource.FILENAME_RESOLUTION,
            width=width,
            height=height,
        )

    def _from_keyword(self, name: str) -> Optional[Classification]:
        for category, pattern in config.RATIO_KEYWORD_PATTERNS:
            if pattern.search(name):
                return Classification(
                    category=category,
                    aspect_ratio=config.CANONICAL_RATIOS[category],
                    source=ClassificationSource.FILENAME_PATTERN,
                )
        return None
