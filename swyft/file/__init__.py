"""
File Module - Sources, Bundles and Storage

Reads files to send, zips multi-file selections, and saves or expands
what was received.
"""

from .source import FileBlob, bundle_paths, select_files
from .archive import BundleEntry, expand_bundle
from .storage import FileStorage

__all__ = [
    'FileBlob',
    'bundle_paths',
    'select_files',
    'BundleEntry',
    'expand_bundle',
    'FileStorage',
]
