"""Destinations that finished bundles are delivered to.

A sink is asked for a location before a bundle is assembled, so that a user
who declines the prompt does not pay for fetching and compressing the part.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from ..errors import NoSaveTargetError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveLocation:
    name: str
    path: Path


class BundleSink(Protocol):
    def choose(self, name: str) -> SaveLocation | None:
        """Pick where a bundle called name goes; None means the user declined."""
        ...

    def save(self, location: SaveLocation, data: bytes) -> str:
        """Write data to location and return a description of where it went."""
        ...


def _write_file(path: Path, data: bytes) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    temporary = path.with_name(path.name + '.partial')
    with open(temporary, 'wb') as f:
        f.write(data)
    os.replace(temporary, path)
    logger.info(f"Saved {len(data)} bytes to {path}")
    return str(path)


class DirectorySink:
    """Writes every bundle into one directory under its suggested name."""

    def __init__(self, directory: str | os.PathLike):
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def choose(self, name: str) -> SaveLocation | None:
        return SaveLocation(name, self._directory / name)

    def save(self, location: SaveLocation, data: bytes) -> str:
        return _write_file(location.path, data)


class PromptingSink:
    """Asks a chooser for every bundle's location.

    The chooser receives the suggested file name and returns a path, or None
    when the user declines. If the chooser itself fails (for instance because no
    terminal is attached) and a fallback sink was given, the fallback is used.
    """

    def __init__(self, chooser: Callable[[str], str | os.PathLike | None],
                 fallback: BundleSink | None = None):
        self._chooser = chooser
        self._fallback = fallback

    def choose(self, name: str) -> SaveLocation | None:
        try:
            chosen = self._chooser(name)
        except (EOFError, OSError) as e:
            if self._fallback is None:
                raise NoSaveTargetError(f"Cannot ask for a save location: {e}") from e
            logger.warning(f"Save prompt unavailable, falling back: {e}")
            return self._fallback.choose(name)

        if chosen is None or str(chosen) == '':
            return None
        path = Path(chosen)
        if path.is_dir():
            path = path / name
        return SaveLocation(path.name, path)

    def save(self, location: SaveLocation, data: bytes) -> str:
        return _write_file(location.path, data)


def resolve_sink(chooser: Callable[[str], str | os.PathLike | None] | None = None,
                 directory: str | os.PathLike | None = None) -> BundleSink:
    """Pick the delivery mechanism for a job.

    Raises:
        NoSaveTargetError: If neither a chooser nor a directory is available
    """
    fallback = DirectorySink(directory) if directory is not None else None
    if chooser is not None:
        return PromptingSink(chooser, fallback)
    if fallback is not None:
        return fallback
    raise NoSaveTargetError("No save location available: neither a prompt nor an output directory")
