"""Tests for file sources, bundle expansion and received-file storage."""

import zipfile

import pytest

from swyft.file.archive import expand_bundle, flat_name, is_zip
from swyft.file.source import BUNDLE_MIME_TYPE, FileBlob, bundle_paths, select_files
from swyft.file.storage import FileStorage, safe_name
from swyft.transfer.receiver import ReceivedFile


@pytest.fixture
def folder(tmp_path):
    """A small folder tree to bundle."""
    root = tmp_path / 'photos'
    (root / 'beach').mkdir(parents=True)
    (root / 'beach' / '1.jpg').write_bytes(b'jpeg-one')
    (root / 'beach' / '2.jpg').write_bytes(b'jpeg-two')
    (root / 'notes.txt').write_text('hello')
    return root


def test_blob_from_path(sample_file):
    blob = FileBlob.from_path(sample_file)
    assert blob.name == 'sample.bin'
    assert blob.size == 200_000
    assert blob.mime_type == 'application/octet-stream'


def test_blob_from_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileBlob.from_path(tmp_path / 'nope.txt')


def test_blob_mime_type_from_name():
    assert FileBlob.from_bytes('a.txt', b'x').mime_type == 'text/plain'
    assert FileBlob.from_bytes('a.weird', b'x').mime_type == 'application/octet-stream'


@pytest.mark.asyncio
async def test_ranged_reads_from_disk(sample_file):
    blob = FileBlob.from_path(sample_file)
    data = sample_file.read_bytes()
    assert await blob.read(0, 10) == data[:10]
    assert await blob.read(199_995, 100) == data[199_995:]
    assert await blob.read(200_000, 10) == b''


@pytest.mark.asyncio
async def test_bundle_folder_and_expand(folder):
    blob = await bundle_paths([folder])
    assert blob.name == 'photos.zip'
    assert blob.mime_type == BUNDLE_MIME_TYPE
    assert is_zip(blob.data)

    entries = {entry.path: entry for entry in expand_bundle(blob.data)}
    assert set(entries) == {'photos/beach/1.jpg', 'photos/beach/2.jpg', 'photos/notes.txt'}
    assert entries['photos/beach/1.jpg'].name == 'photos_beach_1.jpg'
    assert entries['photos/notes.txt'].data == b'hello'


def test_expand_skips_directory_entries():
    import io
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        archive.writestr('docs/', b'')
        archive.writestr('docs/a.txt', b'A')
    entries = expand_bundle(buffer.getvalue())
    assert [(e.path, e.name, e.data) for e in entries] == [('docs/a.txt', 'docs_a.txt', b'A')]


def test_expand_rejects_non_zip():
    with pytest.raises(zipfile.BadZipFile):
        expand_bundle(b'not a zip')


def test_flat_name():
    assert flat_name('a/b/c.txt') == 'a_b_c.txt'
    assert flat_name('c.txt') == 'c.txt'


@pytest.mark.asyncio
async def test_select_files(folder, sample_file):
    separate = await select_files([sample_file, folder])
    assert [b.name for b in separate] == ['sample.bin', 'photos.zip']

    bundled = await select_files([sample_file, folder], bundle=True)
    assert len(bundled) == 1
    assert bundled[0].name == 'bundle.zip'


def test_safe_name_strips_directories():
    assert safe_name('../../etc/passwd') == 'passwd'
    assert safe_name('C:\\temp\\x.txt') == 'x.txt'
    assert safe_name('..') == 'file'


@pytest.mark.asyncio
async def test_storage_never_overwrites(tmp_path):
    storage = FileStorage(tmp_path / 'out')
    received = ReceivedFile(name='report.pdf', mime_type='application/pdf', data=b'v1')

    first = await storage.save_file(received)
    second = await storage.save_file(ReceivedFile('report.pdf', 'application/pdf', b'v2'))

    assert first.name == 'report.pdf'
    assert second.name == 'report (1).pdf'
    assert first.read_bytes() == b'v1'
    assert second.read_bytes() == b'v2'
    assert list(storage.temp_dir.iterdir()) == []

    stats = storage.get_stats()
    assert stats.file_count == 2
    assert stats.total_bytes == 4


@pytest.mark.asyncio
async def test_storage_saves_bundle_members(tmp_path, folder):
    blob = await bundle_paths([folder])
    storage = FileStorage(tmp_path / 'out')

    paths = await storage.save_bundle(ReceivedFile(blob.name, blob.mime_type, blob.data))

    assert sorted(p.name for p in paths) == [
        'photos_beach_1.jpg', 'photos_beach_2.jpg', 'photos_notes.txt']
    assert all(p.parent.name == 'photos' for p in paths)
