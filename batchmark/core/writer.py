"""
Output Writers
==============
Destinations for finished outputs.

- Writer: the single-method interface the pipeline depends on
- DirectoryWriter: writes each output into a folder
- export_archive: bundles outputs into one ZIP file
"""

import logging
import time
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from batchmark import config
from batchmark.core.errors import WriteBackError

logger = logging.getLogger(__name__)


class Writer(ABC):
    """Persists one named output."""

    @abstractmethod
    def write(self, name: str, data: bytes):
        """
        Write ``data`` under ``name``.

        Raises:
            WriteBackError: If the data could not be persisted.
        """


class DirectoryWriter(Writer):
    """Writes outputs into a directory, overwriting files with the same name."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    def write(self, name: str, data: bytes):
        # Keep names flat: never write outside the output directory
        target = self.output_dir / Path(name).name
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise WriteBackError(f"Cannot write {target}: {e}") from e
        logger.debug("Wrote %s (%d bytes)", target, len(data))


def archive_name(timestamp_ms: Optional[int] = None) -> str:
    """Default archive file name, stamped with the current time."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return config.ARCHIVE_NAME_TEMPLATE.format(timestamp=timestamp_ms)


def export_archive(outputs: Iterable[Tuple[str, bytes]], destination: Union[str, Path]) -> Path:
    """
    Bundle (name, bytes) pairs into a ZIP archive.

    If ``destination`` is a directory, a timestamped archive name is used.
    Names already present in the archive get a numeric suffix.

    Returns:
        Path of the written archive.

    Raises:
        WriteBackError: If the archive could not be written.
    """
    destination = Path(destination)
    if destination.is_dir():
        destination = destination / archive_name()

    used = set()
    count = 0
    try:
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, data in outputs:
                entry = Path(name).name
                stem, suffix = Path(entry).stem, Path(entry).suffix
                index = 1
                while entry in used:
                    entry = f"{stem}_{index}{suffix}"
                    index += 1
                used.add(entry)
                archive.writestr(entry, data)
                count += 1
    except OSError as e:
        raise WriteBackError(f"Cannot write archive {destination}: {e}") from e

    logger.info("Exported %d images to %s", count, destination)
    return destination
