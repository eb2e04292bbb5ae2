"""Progress and throughput tracking for one file transfer."""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class TransferProgress:
    """Track transfer progress for display."""
    total_bytes: int
    bytes_transferred: int = 0
    start_time: float = field(default_factory=time.time)
    file_name: str = ''
    index: Optional[int] = None
    total_files: Optional[int] = None

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.total_bytes == 0:
            return 1.0
        return min(self.bytes_transferred / self.total_bytes, 1.0)

    @property
    def progress_percent(self) -> float:
        """Progress as percentage."""
        return self.progress * 100

    @property
    def elapsed_seconds(self) -> float:
        """Time elapsed since start."""
        return time.time() - self.start_time

    @property
    def speed_bytes_per_sec(self) -> float:
        """Transfer speed in bytes/second."""
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0
        return self.bytes_transferred / elapsed

    def advance(self, nbytes: int):
        self.bytes_transferred += nbytes

    def describe(self) -> str:
        """e.g. '12.50 MB / 40.00 MB (8.31 MB/s)'"""
        mb = 1024 * 1024
        return (f"{self.bytes_transferred / mb:.2f} MB / {self.total_bytes / mb:.2f} MB "
                f"({self.speed_bytes_per_sec / mb:.2f} MB/s)")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'file_name': self.file_name,
            'total_bytes': self.total_bytes,
            'bytes_transferred': self.bytes_transferred,
            'progress_percent': self.progress_percent,
            'speed_bytes_per_sec': self.speed_bytes_per_sec,
            'elapsed_seconds': self.elapsed_seconds,
            'index': self.index,
            'total_files': self.total_files,
        }


# Progress callback type
ProgressCallback = Callable[[TransferProgress], None]

# Status callback type: (message, level) where level is info/success/error
StatusCallback = Callable[[str, str], None]
