"""
Data synchronization from the reference directory into the live data directory.

The mirror is one-way and attribute-preserving: after it completes the
destination holds exactly the entries of the source. Two backends implement it:
- RsyncMirror: shells out to `rsync -a --delete`
- PythonMirror: pure-Python walk using shutil, for images without rsync
"""
import logging
import os
import shutil
import stat
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from indexer_entrypoint.errors import ProvisionError, SyncExecutionError, SyncPreconditionError
from indexer_entrypoint.schema import PrivilegeState, SyncSpec


logger = logging.getLogger(__name__)


class MirrorBackend(ABC):
    """Strategy for making destination an exact copy of source."""

    name = "abstract"

    @abstractmethod
    def mirror(self, source: str, destination: str):
        """
        Mirror source into destination, deleting destination-only entries.

        Both directories must already exist.

        Raises:
            SyncExecutionError: If the copy fails
        """
        pass


class RsyncMirror(MirrorBackend):
    """Mirror via the rsync binary. Its output goes straight to the container log."""

    name = "rsync"

    def build_command(self, source: str, destination: str):
        # Trailing slashes copy the contents, not the directory itself
        return [
            "rsync", "-a", "--delete",
            source.rstrip('/') + '/',
            destination.rstrip('/') + '/',
        ]

    def mirror(self, source: str, destination: str):
        command = self.build_command(source, destination)
        try:
            result = subprocess.run(command, check=False)
        except OSError as e:
            raise SyncExecutionError(f"Cannot run rsync: {e}", exit_code=127) from e

        if result.returncode != 0:
            raise SyncExecutionError(
                f"rsync {source} -> {destination} failed with exit status {result.returncode}",
                exit_code=result.returncode
            )


def _kind(mode: int) -> str:
    if stat.S_ISLNK(mode):
        return 'link'
    if stat.S_ISDIR(mode):
        return 'dir'
    if stat.S_ISREG(mode):
        return 'file'
    return 'special'


def _remove(path: str):
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


class PythonMirror(MirrorBackend):
    """
    Mirror via shutil.

    Matches `rsync -a --delete` for directories, regular files and symlinks:
    permissions and modification times are preserved, ownership is preserved
    only when preserve_owner is set (rsync does so only as root), and files
    whose size and mtime already match are left alone. Device nodes, fifos
    and sockets are skipped with a warning.
    """

    name = "python"

    def __init__(self, preserve_owner: bool = False):
        self.preserve_owner = preserve_owner

    def mirror(self, source: str, destination: str):
        try:
            self._delete_extraneous(source, destination)
            self._copy_dir(source, destination)
        except OSError as e:
            raise SyncExecutionError(f"Mirror {source} -> {destination} failed: {e}") from e

    def _delete_extraneous(self, source: str, destination: str):
        with os.scandir(destination) as entries:
            entries = list(entries)

        for entry in entries:
            counterpart = os.path.join(source, entry.name)
            entry_kind = _kind(entry.stat(follow_symlinks=False).st_mode)
            try:
                source_kind = _kind(os.lstat(counterpart).st_mode)
            except FileNotFoundError:
                source_kind = None

            if source_kind != entry_kind:
                logger.debug(f"Deleting {entry.path}")
                _remove(entry.path)
            elif entry_kind == 'dir':
                self._delete_extraneous(counterpart, entry.path)

    def _up_to_date(self, src_stat: os.stat_result, target: str) -> bool:
        try:
            dst_stat = os.lstat(target)
        except FileNotFoundError:
            return False
        return (
            stat.S_ISREG(dst_stat.st_mode)
            and dst_stat.st_size == src_stat.st_size
            and int(dst_stat.st_mtime) == int(src_stat.st_mtime)
        )

    def _chown_like(self, src_stat: os.stat_result, target: str):
        if self.preserve_owner:
            os.lchown(target, src_stat.st_uid, src_stat.st_gid)

    def _copy_file(self, src: str, dst: str, src_stat: os.stat_result):
        if self._up_to_date(src_stat, dst):
            shutil.copystat(src, dst)
        else:
            # Write beside the target and swap in, so readers never see a partial file.
            # mkstemp never reuses the name of an entry already in the directory
            fd, partial = tempfile.mkstemp(
                dir=os.path.dirname(dst), prefix=f".{os.path.basename(dst)}.", suffix=".partial"
            )
            os.close(fd)
            try:
                shutil.copy2(src, partial)
                os.replace(partial, dst)
            except OSError:
                if os.path.lexists(partial):
                    os.unlink(partial)
                raise
        self._chown_like(src_stat, dst)

    def _copy_link(self, src: str, dst: str, src_stat: os.stat_result):
        link_target = os.readlink(src)
        if os.path.islink(dst) and os.readlink(dst) == link_target:
            self._chown_like(src_stat, dst)
            return
        if os.path.lexists(dst):
            os.unlink(dst)
        os.symlink(link_target, dst)
        self._chown_like(src_stat, dst)

    def _copy_dir(self, source: str, destination: str):
        with os.scandir(source) as entries:
            entries = sorted(entries, key=lambda e: e.name)

        for entry in entries:
            src_stat = entry.stat(follow_symlinks=False)
            target = os.path.join(destination, entry.name)
            kind = _kind(src_stat.st_mode)

            if kind == 'link':
                self._copy_link(entry.path, target, src_stat)
            elif kind == 'dir':
                if not os.path.isdir(target):
                    os.mkdir(target)
                self._copy_dir(entry.path, target)
            elif kind == 'file':
                self._copy_file(entry.path, target, src_stat)
            else:
                logger.warning(f"Skipping special file {entry.path}")

        # After the contents, so copying does not bump the directory mtime again
        shutil.copystat(source, destination)
        self._chown_like(os.lstat(source), destination)


def select_backend(name: str = "auto", preserve_owner: bool = False) -> MirrorBackend:
    """
    Pick a mirror backend.

    Args:
        name: "rsync", "python", or "auto" (rsync when on PATH)
        preserve_owner: Preserve source ownership in the python backend

    Returns:
        MirrorBackend instance
    """
    if name == "auto":
        name = "rsync" if shutil.which("rsync") else "python"

    if name == "rsync":
        return RsyncMirror()
    if name == "python":
        return PythonMirror(preserve_owner=preserve_owner)

    raise ValueError(f"Unknown sync backend: {name}")


class DataSynchronizer:
    """Promotes the pre-staged data tree into the live data directory."""

    def __init__(self, backend: MirrorBackend):
        self.backend = backend

    def sync(self, spec: SyncSpec, state: PrivilegeState) -> bool:
        """
        Run the mirror if the source exists.

        Args:
            spec: Source and destination directories
            state: Privilege state of the bootstrap process

        Returns:
            True if the mirror ran, False if it was skipped

        Raises:
            SyncPreconditionError: Destination missing and process is unprivileged
            ProvisionError: Destination missing and could not be created
            SyncExecutionError: The mirror itself failed
        """
        if not os.path.isdir(spec.source):
            logger.info(f"Source {spec.source} does not exist, skipping sync")
            return False

        logger.info(f"Copying {spec.source} -> {spec.destination} ({self.backend.name})")

        if not os.path.isdir(spec.destination):
            if state != PrivilegeState.ELEVATED:
                raise SyncPreconditionError(
                    f"{spec.destination} does not exist and cannot be created as non-root"
                )
            try:
                Path(spec.destination).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ProvisionError(f"Cannot create sync destination {spec.destination}: {e}") from e

        self.backend.mirror(spec.source, spec.destination)
        logger.info("Copy complete")
        return True
