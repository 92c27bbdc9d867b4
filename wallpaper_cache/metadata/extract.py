import logging
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image

from .. import config
from ..exceptions import MetadataExtractionError


class MetadataExtractor:
    """
    Reads pixel dimensions from image files using Pillow.

    Only the header is parsed: Image.open is lazy, so no pixel data is decoded.
    """

    def extract(self, path: Path) -> Tuple[int, int, Optional[str]]:
        """
        Returns:
            (width, height, format) as displayed, i.e. after EXIF rotation.

        Raises:
            MetadataExtractionError: if the file is missing, corrupt or unsupported.
        """
        try:
            with Image.open(path) as im:
                width, height = im.size
                fmt = im.format
                orientation = self._orientation(im)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise MetadataExtractionError(f"Cannot read dimensions of {path}: {e}") from e

        if width <= 0 or height <= 0:
            raise MetadataExtractionError(f"Invalid dimensions {width}x{height} for {path}")

        # Phone cameras store portrait shots sideways and flag the rotation in EXIF
        if orientation in config.EXIF_TRANSPOSED_ORIENTATIONS:
            width, height = height, width

        return width, height, fmt

    def _orientation(self, im: Image.Image) -> Optional[int]:
        try:
            return im.getexif().get(config.EXIF_ORIENTATION_TAG)
        except Exception as e:
            # A broken EXIF block should not hide otherwise valid dimensions
            logging.debug(f"EXIF read failed for {im.filename}: {e}")
            return None
