"""
File Sources

A transfer always moves exactly one named blob. Selecting several files
or a folder is a packaging step that happens before the transfer: the
selection is zipped into a single bundle.
"""

import asyncio
import io
import mimetypes
import logging
import zipfile
from pathlib import Path
from typing import List, Optional, Sequence, Union

import aiofiles

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
BUNDLE_MIME_TYPE = "application/zip"


class FileBlob:
    """
    A named byte source with declared size and MIME type.

    Backed either by a file on disk (read lazily with aiofiles) or by
    bytes already in memory.
    """

    def __init__(self, name: str, size: int, mime_type: str = DEFAULT_MIME_TYPE,
                 path: Optional[Path] = None, data: Optional[bytes] = None):
        self.name = name
        self.size = size
        self.mime_type = mime_type or DEFAULT_MIME_TYPE
        self.path = Path(path) if path is not None else None
        self.data = data

    def __repr__(self) -> str:
        return f"FileBlob(name={self.name!r}, size={self.size}, mime_type={self.mime_type!r})"

    @classmethod
    def from_path(cls, file_path: Union[str, Path]) -> 'FileBlob':
        file_path = Path(file_path)
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")
        return cls(
            name=file_path.name,
            size=file_path.stat().st_size,
            mime_type=guess_mime_type(file_path),
            path=file_path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes,
                   mime_type: str = None) -> 'FileBlob':
        return cls(
            name=name,
            size=len(data),
            mime_type=mime_type or guess_mime_type(Path(name)),
            data=bytes(data),
        )

    async def read(self, offset: int, length: int) -> bytes:
        """Read up to `length` bytes starting at `offset`."""
        if self.data is not None:
            return self.data[offset:offset + length]

        async with aiofiles.open(self.path, 'rb') as f:
            await f.seek(offset)
            return await f.read(length)


def guess_mime_type(file_path: Path) -> str:
    """Guess MIME type from file extension."""
    mime_type, _ = mimetypes.guess_type(str(file_path))
    return mime_type or DEFAULT_MIME_TYPE


def _zip_paths(paths: Sequence[Path]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as archive:
        for path in paths:
            if path.is_dir():
                for member in sorted(path.rglob('*')):
                    if member.is_file():
                        archive.write(member, member.relative_to(path.parent).as_posix())
            else:
                archive.write(path, path.name)
    return buffer.getvalue()


async def bundle_paths(paths: Sequence[Union[str, Path]],
                       name: str = None) -> FileBlob:
    """
    Pack files and folders into one zip bundle.

    Folder members keep their paths relative to the folder's parent,
    so the receiver can list them individually after expansion.
    """
    paths = [Path(p) for p in paths]
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

    if name is None:
        name = f"{paths[0].name}.zip" if len(paths) == 1 else "bundle.zip"

    data = await asyncio.to_thread(_zip_paths, paths)
    logger.info(f"Bundled {len(paths)} path(s) into {name} ({len(data):,} bytes)")
    return FileBlob(name=name, size=len(data), mime_type=BUNDLE_MIME_TYPE, data=data)


async def select_files(paths: Sequence[Union[str, Path]],
                       bundle: bool = False) -> List[FileBlob]:
    """
    Turn a user selection into blobs to send.

    Plain files are sent one by one unless `bundle` is set; folders are
    always zipped.
    """
    paths = [Path(p) for p in paths]
    if bundle:
        return [await bundle_paths(paths)]

    blobs = []
    for path in paths:
        if path.is_dir():
            blobs.append(await bundle_paths([path]))
        else:
            blobs.append(FileBlob.from_path(path))
    return blobs
