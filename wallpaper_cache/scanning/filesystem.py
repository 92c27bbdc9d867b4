import os
import logging
from pathlib import Path
from typing import Iterator, Union

from .. import config


def is_supported_image(path: Union[Path, str], root: Union[Path, str, None] = None) -> bool:
    """
    True for files with a supported extension that are not hidden.
    Hidden means any path component below root starting with '.'.
    """
    path = Path(path)
    if path.suffix.lower() not in config.SUPPORTED_EXTS:
        return False

    parts = path.parts
    if root is not None:
        try:
            parts = path.relative_to(root).parts
        except ValueError:
            pass
    return not any(part.startswith('.') for part in parts)


def iter_image_files(root: Path) -> Iterator[Path]:
    """Depth-first walker using os.scandir and an explicit stack."""
    root = Path(root)
    stack = [root]
    while stack:
        current = stack.pop()

        try:
            with os.scandir(current) as it:
                entries = list(it)
        except (OSError, PermissionError):
            logging.warning(f"Cannot list directory: {current}")
            continue

        # Sort for stable traversal order
        entries.sort(key=lambda e: e.name.lower())

        dirs = []
        for e in entries:
            if e.name.startswith('.'):
                continue
            if e.is_dir(follow_symlinks=False):
                dirs.append(Path(e.path))
            elif e.is_file(follow_symlinks=False) and is_supported_image(e.name):
                yield Path(e.path)

        # Push dirs to stack (reversed so we process A before Z)
        for d in reversed(dirs):
            stack.append(d)
