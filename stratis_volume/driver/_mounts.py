# Copyright Red Hat
#
# stratis_volume/driver/_mounts.py - Stratis volume mount support
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Mount table inspection and mount helpers for the volume driver.
"""
from subprocess import run, CalledProcessError
from typing import Iterator, Optional
import collections
import logging
import shutil
import os.path
import os

from stratis_volume import (
    STRATIS_VOLUME_SUBSYSTEM_MOUNTS,
    VolumeCalloutError,
    VolumeMountError,
    VolumePathError,
    VolumeSystemError,
    VolumeUmountError,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_mounts(msg, *args, **kwargs):
    """A wrapper for mounts subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": STRATIS_VOLUME_SUBSYSTEM_MOUNTS}, **kwargs
    )


#: Path to /proc/self/mounts
PROC_MOUNTS = "/proc/self/mounts"

#: Stratis filesystems are always XFS.
STRATIS_FSTYPE = "xfs"

#: Permissions for volume mount point directories.
MOUNT_POINT_MODE = 0o755

MOUNT_CMD = "mount"
UMOUNT_CMD = "umount"


def _unescape_mounts(escaped: str) -> str:
    """
    Unescape octal escapes in values read from /proc/*mounts

    :param escaped: The string to unescape.
    :type escaped: str
    :returns: The unescaped string with octal values replaced by literal
              character values.
    :rtype: str
    """
    return (
        escaped.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def _resolve_device(devpath: str) -> str:
    """
    Resolve symlinks in ``devpath``, returning ``devpath`` unchanged if it
    cannot be resolved.
    """
    try:
        return os.path.realpath(devpath, strict=True)
    except OSError:
        return devpath


class MountTable:
    """
    Reader for the live mount table.

    The table is read afresh on every query since mounts may be changed by
    other programs at any time.
    """

    # Define a named tuple to give structure to each mount table entry.
    MountEntry = collections.namedtuple(
        "MountEntry", ["device", "mountpoint", "fstype", "options"]
    )

    def __init__(self, path=PROC_MOUNTS):
        """Initialize with the path to a mounts file.

        :param path: Path to the mounts file (e.g., '/proc/self/mounts')
        """
        self.path = path

    def entries(self) -> Iterator["MountTable.MountEntry"]:
        """Iterate over the entries of the mount table.

        :returns: Yields ``MountEntry`` objects with decoded paths.
        :raises: ``VolumeSystemError`` if the mount table cannot be read.
        """
        try:
            with open(self.path, "r", encoding="utf8") as fp:
                lines = fp.readlines()
        except OSError as err:
            raise VolumeSystemError(f"Unable to read {self.path}: {err}") from err

        for line in lines:
            parts = line.split()
            if len(parts) < 4:
                if line.strip():
                    _log_warn("Skipping malformed %s line: %s", self.path, line)
                continue
            yield self.MountEntry(
                _unescape_mounts(parts[0]),
                _unescape_mounts(parts[1]),
                parts[2],
                parts[3],
            )

    def is_mounted(self, path: str) -> bool:
        """
        Test whether a file system is mounted at ``path``.

        :param path: The mount point path to check.
        :returns: ``True`` if ``path`` is a mount point or ``False`` otherwise.
        """
        abs_path = os.path.abspath(path)
        return any(entry.mountpoint == abs_path for entry in self.entries())

    def mount_point_of(self, device: str) -> Optional[str]:
        """
        Return the mount point of ``device``.

        The device matches an entry if either its literal path or its
        symlink-resolved path equals the entry's device.

        :param device: The device path to look up.
        :returns: The first matching mount point or ``None`` if the device
                  is not mounted.
        """
        resolved = _resolve_device(device)
        for entry in self.entries():
            if entry.device in (device, resolved):
                return entry.mountpoint
        return None


def _mount(what: str, where: str, fstype: str = STRATIS_FSTYPE):
    """
    Call the mount program to mount a file system.

    :param what: The source for the mount operation.
    :param where: The path to the mount point.
    :param fstype: The file system type.
    """
    mount_cmd = [MOUNT_CMD, "--type", fstype, what, where]
    _log_debug_mounts("Calling %s", " ".join(mount_cmd))
    try:
        run(mount_cmd, check=True, capture_output=True, encoding="utf8")
    except FileNotFoundError as err:
        raise VolumeCalloutError(f"Could not execute {MOUNT_CMD}: {err}") from err
    except CalledProcessError as err:
        raise VolumeMountError(what, where, err.returncode, err.stderr) from err


def _umount(where: str):
    """
    Call the umount program to unmount a file system.

    :param where: The mount point to be unmounted.
    """
    umount_cmd = [UMOUNT_CMD, where]
    _log_debug_mounts("Calling %s", " ".join(umount_cmd))
    try:
        run(umount_cmd, check=True, capture_output=True, encoding="utf8")
    except FileNotFoundError as err:
        raise VolumeCalloutError(f"Could not execute {UMOUNT_CMD}: {err}") from err
    except CalledProcessError as err:
        raise VolumeUmountError(where, err.returncode, err.stderr) from err


def prepare_mount_point(path: str):
    """
    Prepare ``path`` for use as a volume mount point.

    An existing empty directory is recreated so that it carries the
    expected permissions.

    :param path: The mount point path.
    :raises: ``VolumePathError`` if ``path`` exists and is not an empty
             directory, or ``VolumeSystemError`` if the directory cannot be
             created.
    """
    if os.path.lexists(path):
        if not os.path.isdir(path) or os.path.islink(path):
            raise VolumePathError(f"Mount point {path} exists but is not a directory")
        try:
            if os.listdir(path):
                raise VolumePathError(f"Mount point {path} exists and is not empty")
            os.rmdir(path)
        except OSError as err:
            raise VolumeSystemError(
                f"Failed to prepare mount point {path}: {err}"
            ) from err

    try:
        os.makedirs(path, mode=MOUNT_POINT_MODE, exist_ok=True)
        # Apply the mode regardless of the process umask.
        os.chmod(path, MOUNT_POINT_MODE)
    except OSError as err:
        raise VolumeSystemError(f"Failed to create mount point {path}: {err}") from err
    _log_debug_mounts("Prepared mount point %s", path)


def remove_mount_point(path: str, recursive: bool = False):
    """
    Remove the mount point directory at ``path``.

    Failure is logged and otherwise ignored.

    :param path: The mount point path.
    :param recursive: Remove the directory and its contents.
    """
    try:
        if recursive:
            shutil.rmtree(path)
        else:
            os.rmdir(path)
    except FileNotFoundError:
        return
    except OSError as err:
        _log_warn("Failed to remove mount point directory %s: %s", path, err)
        return
    _log_debug_mounts("Removed mount point %s", path)


class Mounter:
    """
    Mount and unmount volumes below a base mount directory.
    """

    def __init__(self, base_path: str, mount_table: Optional[MountTable] = None):
        """
        Initialise a new ``Mounter``.

        :param base_path: The directory below which all mounts are made.
        :param mount_table: The ``MountTable`` to query, or ``None`` to read
                            the live mount table.
        """
        self.base_path = base_path
        self.mount_table = mount_table if mount_table is not None else MountTable()

    def _check_target(self, target: str):
        abs_target = os.path.abspath(target)
        abs_base = os.path.abspath(self.base_path)
        if abs_target != abs_base and not abs_target.startswith(
            abs_base.rstrip(os.sep) + os.sep
        ):
            raise VolumePathError(
                f"Mount target {target} is not under base path {self.base_path}"
            )

    def mount(self, source: str, target: str, fstype: str = STRATIS_FSTYPE):
        """
        Mount ``source`` on ``target``.

        :param source: The device to mount.
        :param target: The mount point, which must be below ``base_path``.
        :param fstype: The file system type.
        :raises: ``VolumePathError`` if ``target`` is outside ``base_path``.
        """
        self._check_target(target)
        _mount(source, target, fstype=fstype)
        _log_debug_mounts("Mounted %s at %s", source, target)

    def unmount(self, target: str):
        """
        Unmount the file system mounted at ``target``.
        """
        _umount(target)
        _log_debug_mounts("Unmounted %s", target)

    def is_mounted(self, target: str) -> bool:
        """
        Test whether a file system is mounted at ``target``.
        """
        return self.mount_table.is_mounted(target)

    def mount_point_of(self, device: str) -> Optional[str]:
        """
        Return the mount point of ``device`` or ``None`` if it is not mounted.
        """
        return self.mount_table.mount_point_of(device)


__all__ = [
    "PROC_MOUNTS",
    "STRATIS_FSTYPE",
    "MOUNT_POINT_MODE",
    "MountTable",
    "Mounter",
    "prepare_mount_point",
    "remove_mount_point",
]
