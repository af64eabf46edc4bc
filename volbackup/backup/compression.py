"""
Archive handling for volume backups.

Archives are gzip-compressed tar files. Every entry is stored under the base
name of the volume's source directory, so `/srv/data/photos` produces entries
`photos`, `photos/2024/a.jpg`, ...

Live data directories change while they are read. A file that disappears
between listing and reading, or whose size changes mid-read, is recorded as
an ArchivalWarning and the backup carries on; anything else fails the backup.
"""

import os
import stat
import logging
import tarfile
from pathlib import Path, PurePosixPath
from typing import List, Dict, Any, Optional, Iterable

from .errors import ArchivalError, ArchivalWarning, PreconditionError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


class _FixedSizeReader:
    """
    File wrapper that yields exactly `size` bytes.

    The tar header for a file is written before its data, so the data has to
    match the size recorded at stat time. A file that shrank is zero-padded and
    a file that grew is truncated; either way `changed` is set.
    """

    def __init__(self, fileobj, size: int):
        self._fileobj = fileobj
        self._remaining = size
        self.changed = False

    def read(self, n: int = -1) -> bytes:
        if self._remaining <= 0:
            return b''
        if n is None or n < 0 or n > self._remaining:
            n = self._remaining

        data = self._fileobj.read(n)
        if len(data) < n:
            self.changed = True
            data += b'\0' * (n - len(data))

        self._remaining -= len(data)
        if self._remaining == 0 and self._fileobj.read(1):
            self.changed = True
        return data


def create_volume_archive(source_path: str, archive_path: str) -> List[ArchivalWarning]:
    """
    Archive a volume's source tree into a single .tar.gz file.

    Args:
        source_path: Directory (or single file) to archive
        archive_path: Output archive path

    Returns:
        ArchivalWarning for each file that changed or vanished mid-read

    Raises:
        ArchivalError: If the source is missing or unreadable, or the archive
            cannot be written. A partial archive is removed.
    """
    source = Path(source_path)

    if not source.exists():
        raise ArchivalError(f"Source path does not exist: {source_path}")

    arcroot = source.name or 'volume'
    collected: List[ArchivalWarning] = []

    try:
        os.makedirs(os.path.dirname(archive_path) or '.', exist_ok=True)

        with tarfile.open(archive_path, 'w:gz') as tar:
            for path, arcname in _walk_source(source, arcroot):
                warning = _add_entry(tar, path, arcname)
                if warning is not None:
                    logger.warning(str(warning))
                    collected.append(warning)

    except ArchivalError:
        _remove_partial(archive_path)
        raise
    except Exception as e:
        _remove_partial(archive_path)
        raise ArchivalError(f"Failed to create archive: {e}")

    return collected


def _walk_source(source: Path, arcroot: str) -> Iterable:
    """Yield (filesystem path, archive name) pairs, parents before children."""
    yield str(source), arcroot

    if not source.is_dir() or source.is_symlink():
        return

    def _raise(error):
        if isinstance(error, FileNotFoundError):
            return
        raise ArchivalError(f"Cannot read directory {error.filename}: {error}")

    for dirpath, dirnames, filenames in os.walk(source, onerror=_raise):
        dirnames.sort()
        relative = os.path.relpath(dirpath, source)
        prefix = arcroot if relative == '.' else f"{arcroot}/{relative.replace(os.sep, '/')}"

        for name in dirnames + sorted(filenames):
            yield os.path.join(dirpath, name), f"{prefix}/{name}"


def _add_entry(tar: tarfile.TarFile, path: str, arcname: str) -> Optional[ArchivalWarning]:
    """
    Add one filesystem entry (non-recursively).

    Returns:
        ArchivalWarning if the entry changed or vanished, else None
    """
    try:
        tarinfo = tar.gettarinfo(path, arcname)
    except FileNotFoundError:
        return ArchivalWarning(f"{arcname}: file removed before we read it")

    if tarinfo is None:
        # Sockets and other unsupported types
        logger.debug(f"Skipping unsupported file type: {path}")
        return None

    if not tarinfo.isreg():
        tar.addfile(tarinfo)
        return None

    try:
        fileobj = open(path, 'rb')
    except FileNotFoundError:
        return ArchivalWarning(f"{arcname}: file removed before we read it")
    except PermissionError as e:
        raise ArchivalError(f"Permission denied reading {path}: {e}")

    with fileobj:
        reader = _FixedSizeReader(fileobj, tarinfo.size)
        tar.addfile(tarinfo, reader)

    if reader.changed:
        return ArchivalWarning(f"{arcname}: file changed as we read it")
    return None


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {archive_path}: {e}")


def list_archive_entries(archive_path: str) -> List[Dict[str, Any]]:
    """
    Enumerate archive entries without extracting.

    Returns:
        List of dicts with 'name', 'path', 'is_directory' and 'size' keys

    Raises:
        ArchivalError: If the archive cannot be read
    """
    entries = []
    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            for member in tar:
                path = member.name.rstrip('/')
                entries.append({
                    'name': PurePosixPath(path).name,
                    'path': path,
                    'is_directory': member.isdir(),
                    'size': member.size if member.isreg() else 0
                })
    except FileNotFoundError:
        raise ArchivalError(f"Archive not found: {archive_path}")
    except (tarfile.TarError, OSError) as e:
        raise ArchivalError(f"Failed to read archive {archive_path}: {e}")

    return entries


def extract_archive(
    archive_path: str,
    destination: str,
    selected_paths: Optional[List[str]] = None
) -> List[str]:
    """
    Extract an archive into a destination directory, overwriting existing files.

    The leading base-name component of each entry is stripped, so a volume
    archived from `/srv/data/photos` restores its contents directly under
    `destination`.

    Args:
        archive_path: Path to the .tar.gz archive
        destination: Directory to restore into (created if missing)
        selected_paths: Entry paths to restore; a directory selects its
            subtree. None restores everything.

    Returns:
        Relative paths of restored entries

    Raises:
        PreconditionError: If a selection matches nothing
        ArchivalError: If the archive cannot be read or written out
    """
    dest_root = Path(destination).resolve()
    selection = None
    if selected_paths is not None:
        selection = [p.strip('/') for p in selected_paths if p and p.strip('/')]
        if not selection:
            raise PreconditionError("No paths selected for restore")

    restored = []
    try:
        dest_root.mkdir(parents=True, exist_ok=True)

        with tarfile.open(archive_path, 'r:gz') as tar:
            for member in tar:
                name = member.name.rstrip('/')
                if selection is not None and not _is_selected(name, selection):
                    continue

                parts = PurePosixPath(name).parts[1:]
                if not parts:
                    # The archive root itself maps onto the destination
                    continue

                target = _safe_target(dest_root, parts, name)

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isreg():
                    _write_member(tar, member, target)
                elif member.issym() and not os.path.isabs(member.linkname):
                    _write_symlink(member, target)
                else:
                    logger.warning(f"Skipping unsupported archive entry: {name}")
                    continue

                restored.append('/'.join(parts))

    except FileNotFoundError as e:
        raise ArchivalError(f"Archive not found: {e.filename or archive_path}")
    except (tarfile.TarError, OSError) as e:
        raise ArchivalError(f"Failed to extract archive: {e}")

    if selection is not None and not restored:
        raise PreconditionError(f"None of the selected paths exist in the archive: {selection}")

    return restored


def _is_selected(name: str, selection: List[str]) -> bool:
    for selected in selection:
        if name == selected or name.startswith(selected + '/'):
            return True
    return False


def _safe_target(dest_root: Path, parts, name: str) -> Path:
    """Resolve an entry's target path, rejecting anything outside dest_root."""
    if any(part in ('..', '') for part in parts) or os.path.isabs(parts[0]):
        raise ArchivalError(f"Refusing to extract outside destination: {name}")

    parent = dest_root.joinpath(*parts[:-1]).resolve()
    if parent != dest_root and dest_root not in parent.parents:
        raise ArchivalError(f"Refusing to extract outside destination: {name}")

    return parent / parts[-1]


def _write_member(tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path):
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_symlink() or (target.exists() and not target.is_file()):
        raise ArchivalError(f"Cannot overwrite non-file at {target}")

    source = tar.extractfile(member)
    with source, open(target, 'wb') as out:
        while True:
            chunk = source.read(_CHUNK_SIZE)
            if not chunk:
                break
            out.write(chunk)

    os.chmod(target, stat.S_IMODE(member.mode) | stat.S_IRUSR | stat.S_IWUSR)
    os.utime(target, (member.mtime, member.mtime))


def _write_symlink(member: tarfile.TarInfo, target: Path):
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.is_symlink() or target.exists():
        target.unlink()
    os.symlink(member.linkname, target)
