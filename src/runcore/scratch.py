"""Per-request scratch directories for one-shot execution.

Every execution materializes its main file and auxiliary files into a
directory of its own under a configurable base directory.  Concurrent
requests never share a directory, so two programs submitted with the same
filename cannot overwrite each other.  The whole directory, including any
build artifacts the runner produced, is removed when the request finishes.

Scratch spaces are created and torn down by the executing thread only and
are not shared between requests.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Tuple

from .errors import InvalidFilePath, ScratchFailure


logger = logging.getLogger("runcore.scratch")


def safe_relative_path(name: str) -> PurePosixPath:
    """Validate a client-supplied file name.

    Names may contain ``/`` separators for nested directories but must stay
    inside the scratch directory: absolute paths, ``..`` components and
    empty names are rejected.
    """
    normalized = name.replace("\\", "/").strip()
    path = PurePosixPath(normalized)
    if not normalized or path.is_absolute() or ".." in path.parts:
        raise InvalidFilePath(name)
    parts = [part for part in path.parts if part not in ("", ".")]
    if not parts:
        raise InvalidFilePath(name)
    return PurePosixPath(*parts)


class ScratchSpace:
    """A private directory holding the files of a single execution."""

    def __init__(self, base_dir: Path, request_id: str) -> None:
        self.request_id = request_id
        self.path = base_dir / request_id

    def __enter__(self) -> "ScratchSpace":
        self.path.mkdir(parents=True, exist_ok=False)
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    def save(self, relative_path: str, content: str) -> Path:
        dest = self.path / safe_relative_path(relative_path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")
        return dest

    def save_all(self, files: Iterable[Tuple[str, str]]) -> List[Path]:
        """Write every ``(name, content)`` pair.

        A failing file does not stop the remaining ones from being written;
        once all have been attempted, :class:`ScratchFailure` lists the
        names that could not be saved.
        """
        saved: List[Path] = []
        failed: List[str] = []
        for name, content in files:
            try:
                saved.append(self.save(name, content))
            except OSError as exc:
                logger.warning("Failed to write %s in %s: %s", name, self.path, exc)
                failed.append(name)
        if failed:
            raise ScratchFailure(failed)
        return saved

    def cleanup(self) -> None:
        if not self.path.exists():
            return
        try:
            shutil.rmtree(self.path)
        except OSError as exc:
            logger.warning("Unable to remove scratch directory %s: %s", self.path, exc)


class ScratchRoot:
    """Base directory that hands out a fresh :class:`ScratchSpace` per request."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def allocate(self) -> ScratchSpace:
        return ScratchSpace(self.base_dir, uuid.uuid4().hex)
