"""
Received File Storage

Design Decision: Writing Received Files
=======================================

Options Considered:
1. Write chunks straight into the destination as they arrive
   - A cancelled transfer leaves a truncated file behind

2. Write the finished file to a temp path, then rename
   - The destination only ever holds complete files
   - Rename is atomic on the same filesystem

Decision: Temp file + rename
- Temp files live in <output_dir>/.partial so the rename never crosses
  filesystems
- Names coming off the wire are reduced to their last path component
- An existing file is never overwritten: "report (1).pdf" is used instead

Storage Layout:
```
received/
├── report.pdf
├── photos.zip
├── photos/           # expanded bundle members
│   └── beach_1.jpg
└── .partial/         # in-progress writes
```
"""

import uuid
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Union

import aiofiles
import aiofiles.os

from ..transfer.receiver import ReceivedFile
from .archive import BundleEntry, expand_bundle

logger = logging.getLogger(__name__)


@dataclass
class StorageStats:
    """Statistics about saved files."""
    file_count: int
    total_bytes: int


def safe_name(name: str) -> str:
    """Strip directories and anything that would escape the output folder."""
    base = PurePosixPath(name.replace('\\', '/')).name
    if base in ('', '.', '..'):
        return 'file'
    return base


class FileStorage:
    """
    Saves received files into an output directory.
    """

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)
        self.temp_dir = self.output_dir / ".partial"

        # Ensure directories exist
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def _unique_path(self, directory: Path, name: str) -> Path:
        path = directory / safe_name(name)
        counter = 1
        while path.exists():
            stem = Path(name).stem
            path = directory / safe_name(f"{stem} ({counter}){Path(name).suffix}")
            counter += 1
        return path

    async def write_bytes(self, name: str, data: bytes, directory: Path = None) -> Path:
        """
        Write data atomically under a name that does not exist yet.

        Returns:
            Path of the written file
        """
        directory = Path(directory) if directory is not None else self.output_dir
        await aiofiles.os.makedirs(directory, exist_ok=True)

        temp_path = self.temp_dir / f"{uuid.uuid4().hex}.tmp"
        async with aiofiles.open(temp_path, 'wb') as f:
            await f.write(data)

        output_path = self._unique_path(directory, name)
        await aiofiles.os.rename(temp_path, output_path)

        logger.info(f"Saved {output_path} ({len(data):,} bytes)")
        return output_path

    async def save_file(self, received: ReceivedFile) -> Path:
        """Save a received file as-is."""
        return await self.write_bytes(received.name, received.data)

    async def save_entries(self, entries: List[BundleEntry], folder: str) -> List[Path]:
        """Save bundle members into a subfolder, one file per member."""
        directory = self._unique_path(self.output_dir, folder)
        paths = []
        for entry in entries:
            paths.append(await self.write_bytes(entry.name, entry.data, directory))
        return paths

    async def save_bundle(self, received: ReceivedFile) -> List[Path]:
        """
        Expand a received bundle into a folder named after it.

        Raises:
            zipfile.BadZipFile: if the bundle is not a valid zip
        """
        entries = expand_bundle(received.data)
        return await self.save_entries(entries, Path(received.name).stem)

    def get_stats(self) -> StorageStats:
        """Get statistics about saved files."""
        file_count = 0
        total_bytes = 0
        for path in self.output_dir.rglob('*'):
            if path.is_file() and self.temp_dir not in path.parents:
                file_count += 1
                total_bytes += path.stat().st_size
        return StorageStats(file_count=file_count, total_bytes=total_bytes)
