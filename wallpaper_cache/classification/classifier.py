import logging
from pathlib import Path
from typing import Optional

from .. import config
from ..exceptions import MetadataExtractionError
from ..metadata.extract import MetadataExtractor
from ..models import Classification, ClassificationSource
from .filename import FilenameClassifier
from .rules import classify_measured_ratio, round_ratio


class ImageClassifier:
    """
    Tiered classification: file name first (no I/O), then pixel metadata,
    then a widescreen default so undecodable files stay listed.
    """

    def __init__(self,
                 extractor: MetadataExtractor,
                 filename_classifier: Optional[FilenameClassifier] = None):
        self.extractor = extractor
        self.filename_classifier = filename_classifier or FilenameClassifier()

    def classify(self, path: Path) -> Classification:
        path = Path(path)

        guessed = self.filename_classifier.classify(path.name)
        if guessed:
            return guessed

        try:
            width, height, fmt = self.extractor.extract(path)
        except MetadataExtractionError as e:
            logging.warning(f"Falling back to {config.FALLBACK_CATEGORY.value} for {path.name}: {e}")
            return Classification(
                category=config.FALLBACK_CATEGORY,
                aspect_ratio=config.FALLBACK_RATIO,
                source=ClassificationSource.FALLBACK_DEFAULT,
            )

        aspect_ratio = round_ratio(width, height)
        return Classification(
            category=classify_measured_ratio(aspect_ratio),
            aspect_ratio=aspect_ratio,
            source=ClassificationSource.PIXEL_METADATA,
            width=width,
            height=height,
            format=fmt,
        )
