"""
Bundle Expansion

A received .zip bundle is opened in memory and unpacked member by
member. Directory entries are skipped; each file member keeps its path
inside the archive and gets a flat display name with "/" replaced by
"_" so it can be saved into a single folder.
"""

import io
import logging
import zipfile
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class BundleEntry:
    """One file extracted from a bundle."""
    path: str
    name: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def flat_name(member_path: str) -> str:
    return member_path.strip('/').replace('/', '_')


def expand_bundle(data: bytes) -> List[BundleEntry]:
    """
    Unpack a zip bundle.

    Raises:
        zipfile.BadZipFile: if the data is not a zip archive
    """
    entries = []
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            entries.append(BundleEntry(
                path=info.filename,
                name=flat_name(info.filename),
                data=archive.read(info),
            ))

    logger.debug(f"Expanded bundle into {len(entries)} entries")
    return entries


def is_zip(data: bytes) -> bool:
    """Check for the zip local file header signature."""
    return zipfile.is_zipfile(io.BytesIO(data))
