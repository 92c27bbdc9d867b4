from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


class RatioCategory(str, Enum):
    ULTRAWIDE = 'ultrawide'
    WIDESCREEN = 'widescreen'
    STANDARD = 'standard'
    PORTRAIT = 'portrait'
    SQUARE = 'square'


class ClassificationSource(str, Enum):
    FILENAME_RESOLUTION = 'filename-resolution'
    FILENAME_PATTERN = 'filename-pattern'
    PIXEL_METADATA = 'pixel-metadata'
    FALLBACK_DEFAULT = 'fallback-default'


class EventKind(str, Enum):
    ADD = 'add'
    CHANGE = 'change'
    DELETE = 'delete'
    # Everything indexed under a directory that went away
    DELETE_TREE = 'delete-tree'


class EngineState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    LOADING = 'loading'
    WATCHING = 'watching'
    REANALYZING = 'reanalyzing'
    STOPPED = 'stopped'


@dataclass(frozen=True)
class FileChangeEvent:
    path: str
    kind: EventKind


@dataclass(frozen=True)
class Classification:
    """
    Outcome of classifying one file, before file stats are attached.
    """
    category: RatioCategory
    aspect_ratio: float
    source: ClassificationSource
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None


@dataclass(frozen=True)
class ImageRecord:
    """
    One indexed image. Frozen so a record handed to a reader never changes under it.
    """
    path: str
    category: RatioCategory
    aspect_ratio: float
    source: ClassificationSource
    file_size: int
    mtime_ns: int               # on-disk modification time; a mismatch means stale
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None

    @property
    def file_name(self) -> str:
        return Path(self.path).name

    @property
    def dimensions(self) -> Optional[Tuple[int, int]]:
        if self.width and self.height:
            return self.width, self.height
        return None

    @classmethod
    def from_classification(cls, path: str, result: Classification,
                            file_size: int, mtime_ns: int) -> "ImageRecord":
        return cls(
            path=path,
            category=result.category,
            aspect_ratio=result.aspect_ratio,
            source=result.source,
            file_size=file_size,
            mtime_ns=mtime_ns,
            width=result.width,
            height=result.height,
            format=result.format,
        )
