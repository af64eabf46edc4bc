"""
Unit tests for archive handling (volbackup/backup/compression.py).

Tests archiving volume trees, listing entries and full/selective extraction.
"""

import io
import os
import tarfile
from unittest.mock import patch

import pytest

from volbackup.backup.compression import (
    _FixedSizeReader,
    create_volume_archive,
    list_archive_entries,
    extract_archive
)
from volbackup.backup.errors import ArchivalError, ArchivalWarning, PreconditionError


def _tree(root):
    """Relative path -> bytes for every file under root."""
    files = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(dirpath, name)
            with open(full, 'rb') as f:
                files[os.path.relpath(full, root)] = f.read()
    return files


class TestCreateVolumeArchive:
    """Test archive creation."""

    def test_archive_entries_use_source_basename(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'

        warnings = create_volume_archive(str(source_dir), str(archive))

        assert warnings == []
        with tarfile.open(archive, 'r:gz') as tar:
            names = tar.getnames()
        assert names[0] == 'appdata'
        assert 'appdata/a.txt' in names
        assert 'appdata/nested/deeper/c.bin' in names

    def test_missing_source_raises(self, tmp_path):
        archive = tmp_path / 'out.tar.gz'

        with pytest.raises(ArchivalError, match='does not exist'):
            create_volume_archive(str(tmp_path / 'missing'), str(archive))

        assert not archive.exists()

    def test_creates_archive_directory(self, source_dir, tmp_path):
        archive = tmp_path / 'new' / 'dir' / 'out.tar.gz'
        create_volume_archive(str(source_dir), str(archive))
        assert archive.exists()

    def test_vanished_file_is_a_warning(self, source_dir, tmp_path):
        """A file removed between listing and reading does not fail the archive."""
        archive = tmp_path / 'out.tar.gz'
        real_gettarinfo = tarfile.TarFile.gettarinfo

        def flaky(self, name=None, arcname=None, fileobj=None):
            if arcname == 'appdata/a.txt':
                raise FileNotFoundError(name)
            return real_gettarinfo(self, name, arcname, fileobj)

        with patch.object(tarfile.TarFile, 'gettarinfo', flaky):
            warnings = create_volume_archive(str(source_dir), str(archive))

        assert len(warnings) == 1
        assert isinstance(warnings[0], ArchivalWarning)
        assert 'removed before we read it' in str(warnings[0])
        names = [e['path'] for e in list_archive_entries(str(archive))]
        assert 'appdata/a.txt' not in names
        assert 'appdata/nested/b.txt' in names

    def test_grown_file_is_a_warning(self, source_dir, tmp_path):
        """A file that grows after stat is truncated to its header size."""
        archive = tmp_path / 'out.tar.gz'
        real_gettarinfo = tarfile.TarFile.gettarinfo

        def stale(self, name=None, arcname=None, fileobj=None):
            info = real_gettarinfo(self, name, arcname, fileobj)
            if arcname == 'appdata/a.txt':
                info.size = 2
            return info

        with patch.object(tarfile.TarFile, 'gettarinfo', stale):
            warnings = create_volume_archive(str(source_dir), str(archive))

        assert len(warnings) == 1
        assert 'changed as we read it' in str(warnings[0])
        with tarfile.open(archive, 'r:gz') as tar:
            assert tar.extractfile('appdata/a.txt').read() == b'al'

    def test_permission_error_fails_and_removes_partial(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'
        real_open = open

        def guarded_open(path, *args, **kwargs):
            if str(path).endswith('b.txt'):
                raise PermissionError(13, 'Permission denied', str(path))
            return real_open(path, *args, **kwargs)

        with patch('builtins.open', guarded_open):
            with pytest.raises(ArchivalError, match='Permission denied'):
                create_volume_archive(str(source_dir), str(archive))

        assert not archive.exists()


class TestFixedSizeReader:
    """Test the size-pinning file wrapper."""

    def test_exact_size(self):
        reader = _FixedSizeReader(io.BytesIO(b'hello'), 5)
        assert reader.read() == b'hello'
        assert reader.changed is False

    def test_shrunk_file_is_padded(self):
        reader = _FixedSizeReader(io.BytesIO(b'hi'), 4)
        assert reader.read(4) == b'hi\0\0'
        assert reader.changed is True

    def test_grown_file_is_truncated(self):
        reader = _FixedSizeReader(io.BytesIO(b'hello world'), 5)
        assert reader.read(10) == b'hello'
        assert reader.read() == b''
        assert reader.changed is True


class TestListArchiveEntries:
    """Test listing without extracting."""

    def test_lists_names_paths_and_directories(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'
        create_volume_archive(str(source_dir), str(archive))

        entries = {e['path']: e for e in list_archive_entries(str(archive))}

        assert entries['appdata/nested']['is_directory'] is True
        assert entries['appdata/nested']['name'] == 'nested'
        assert entries['appdata/a.txt']['is_directory'] is False
        assert entries['appdata/a.txt']['size'] == 5

    def test_missing_archive_raises(self, tmp_path):
        with pytest.raises(ArchivalError):
            list_archive_entries(str(tmp_path / 'nope.tar.gz'))


class TestExtractArchive:
    """Test full and selective restore."""

    def test_full_round_trip(self, source_dir, tmp_path):
        """Archiving then restoring reproduces contents and relative paths."""
        archive = tmp_path / 'out.tar.gz'
        destination = tmp_path / 'restored'
        create_volume_archive(str(source_dir), str(archive))

        restored = extract_archive(str(archive), str(destination))

        assert _tree(destination) == _tree(source_dir)
        assert 'nested/deeper/c.bin' in restored

    def test_overwrites_existing_files(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'
        destination = tmp_path / 'restored'
        create_volume_archive(str(source_dir), str(archive))
        destination.mkdir()
        (destination / 'a.txt').write_text('stale')

        extract_archive(str(archive), str(destination))

        assert (destination / 'a.txt').read_text() == 'alpha'

    def test_selective_file_and_directory(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'
        destination = tmp_path / 'restored'
        create_volume_archive(str(source_dir), str(archive))

        extract_archive(str(archive), str(destination), ['appdata/nested/deeper'])

        assert (destination / 'nested' / 'deeper' / 'c.bin').exists()
        assert not (destination / 'a.txt').exists()
        assert not (destination / 'nested' / 'b.txt').exists()

    def test_empty_selection_rejected(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'
        create_volume_archive(str(source_dir), str(archive))

        with pytest.raises(PreconditionError):
            extract_archive(str(archive), str(tmp_path / 'restored'), [])

    def test_selection_matching_nothing_rejected(self, source_dir, tmp_path):
        archive = tmp_path / 'out.tar.gz'
        create_volume_archive(str(source_dir), str(archive))

        with pytest.raises(PreconditionError):
            extract_archive(str(archive), str(tmp_path / 'restored'), ['appdata/missing.txt'])

    def test_rejects_path_traversal(self, tmp_path):
        archive = tmp_path / 'evil.tar.gz'
        payload = b'owned'
        with tarfile.open(archive, 'w:gz') as tar:
            info = tarfile.TarInfo('root/../../escape.txt')
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))

        with pytest.raises(ArchivalError, match='outside destination'):
            extract_archive(str(archive), str(tmp_path / 'restored'))

        assert not (tmp_path / 'escape.txt').exists()
