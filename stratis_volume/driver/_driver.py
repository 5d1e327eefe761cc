# Copyright Red Hat
#
# stratis_volume/driver/_driver.py - Stratis volume driver
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
The volume driver: maps podman volume operations onto Stratis filesystems
and mounts.
"""
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Dict, List, Optional
import threading
import logging
import os.path

from stratis_volume import (
    STRATIS_VOLUME_SUBSYSTEM_DRIVER,
    VolumeConflictError,
    VolumeExistsError,
    VolumeNotFoundError,
    VolumeSizeError,
    VolumeSystemError,
    Filesystem,
    parse_size,
    size_fmt,
    validate_volume_name,
)

from ._mounts import (
    STRATIS_FSTYPE,
    prepare_mount_point,
    remove_mount_point,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_driver(msg, *args, **kwargs):
    """A wrapper for driver subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": STRATIS_VOLUME_SUBSYSTEM_DRIVER}, **kwargs
    )


#: Volume create option giving the filesystem size limit.
OPT_SIZE = "size"

#: Scope reported by ``capabilities()``.
SCOPE_LOCAL = "local"


@dataclass(frozen=True)
class Volume:
    """
    A volume as reported to the volume plugin client.
    """

    name: str
    mountpoint: str = ""
    status: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        """
        Return this volume as a dictionary using the plugin protocol's keys.
        """
        vol_dict = {"Name": self.name, "Mountpoint": self.mountpoint}
        if self.status is not None:
            vol_dict["Status"] = self.status
        return vol_dict


def _status_from_filesystem(fs: Filesystem) -> Dict[str, Any]:
    status = {
        "total": fs.total,
        "used": fs.used,
        "free": fs.free,
        "device": fs.devnode,
    }
    if fs.size_limit is not None:
        status["sizeLimit"] = fs.size_limit
    return status


# pylint: disable=protected-access
def _with_driver_lock(func):
    """
    Decorator serializing ``VolumeDriver`` operations on the driver lock.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        tid = threading.get_native_id()
        with self._lock:
            _log_debug_driver(
                "Acquired driver lock for %s (tid=%d)", func.__name__, tid
            )
            try:
                return func(self, *args, **kwargs)
            finally:
                _log_debug_driver(
                    "Released driver lock for %s (tid=%d)", func.__name__, tid
                )

    return wrapper


class VolumeDriver:
    """
    Volume driver backed by Stratis filesystems.

    No volume state is held by the driver: each operation derives the state
    of a volume from the filesystem manager and the mount table. All
    operations are serialized by a single driver lock.
    """

    def __init__(self, mount_path: str, manager, mounter):
        """
        Initialise a new ``VolumeDriver``.

        :param mount_path: The base directory for volume mount points. A
                           relative path is made absolute so that mount
                           points compare equal to mount table entries.
        :param manager: The ``FilesystemManager`` for the configured pool.
        :param mounter: The ``Mounter`` used to mount and inspect volumes.
        """
        self.mount_path = os.path.abspath(mount_path)
        self._manager = manager
        self._mounter = mounter
        self._lock = threading.Lock()

    def mount_point_path(self, name: str) -> str:
        """
        Return the canonical mount point for the volume named ``name``.
        """
        return os.path.join(self.mount_path, name)

    def _get_filesystem(self, name: str) -> Filesystem:
        try:
            return self._manager.get_by_name(name)
        except VolumeNotFoundError as err:
            raise VolumeNotFoundError(f"Volume {name} not found") from err

    def _mounted_at(self, fs: Filesystem) -> str:
        """
        Return the mount point of ``fs`` if it is mounted at its canonical
        path, or the empty string otherwise. A volume whose mount state
        cannot be read is reported as unmounted.
        """
        try:
            mount_point = self._mounter.mount_point_of(fs.devnode)
        except VolumeSystemError as err:
            _log_debug_driver("Treating %s as unmounted: %s", fs.name, err)
            return ""
        canonical = self.mount_point_path(fs.name)
        return canonical if mount_point == canonical else ""

    @_with_driver_lock
    def create(self, name: str, options: Optional[Dict[str, str]] = None):
        """
        Create a new volume.

        :param name: The volume name.
        :param options: Volume options. The optional "size" option sets a
                        size limit for the filesystem.
        :raises: ``VolumeInvalidNameError`` for an invalid name,
                 ``VolumeSizeError`` for an invalid size and
                 ``VolumeExistsError`` if the volume already exists.
        """
        options = options or {}
        _log_debug_driver("Creating volume %s (options=%s)", name, options)

        validate_volume_name(name)

        size_limit = None
        if size_str := options.get(OPT_SIZE):
            try:
                size_limit = parse_size(size_str)
            except VolumeSizeError as err:
                raise VolumeSizeError(f"Invalid size '{size_str}': {err}") from err

        try:
            self._manager.get_by_name(name)
        except VolumeNotFoundError:
            pass
        else:
            raise VolumeExistsError(f"Volume {name} already exists")

        fs = self._manager.create(name, size_limit=size_limit)

        if size_limit is not None:
            _log_info(
                "Created volume %s with size limit %s", name, size_fmt(size_limit)
            )
        else:
            _log_info("Created volume %s (thin provisioned) on %s", name, fs.devnode)

    @_with_driver_lock
    def remove(self, name: str):
        """
        Remove a volume, unmounting it first if it is mounted.

        :param name: The volume name.
        :raises: ``VolumeNotFoundError`` if the volume does not exist.
        """
        _log_debug_driver("Removing volume %s", name)
        fs = self._get_filesystem(name)

        mount_point = self.mount_point_path(name)
        if self._mounter.is_mounted(mount_point):
            self._mounter.unmount(mount_point)

        remove_mount_point(mount_point, recursive=True)

        self._manager.delete(fs.name)
        _log_info("Removed volume %s", name)

    @_with_driver_lock
    def mount(self, name: str, client_id: str = "") -> str:
        """
        Mount a volume at its canonical mount point.

        Mounting a volume that is already mounted at its canonical mount
        point returns that mount point.

        :param name: The volume name.
        :param client_id: The identifier of the requesting client.
        :returns: The mount point path.
        :raises: ``VolumeNotFoundError`` if the volume does not exist or
                 ``VolumeConflictError`` if it is mounted elsewhere.
        """
        _log_debug_driver("Mounting volume %s (id=%s)", name, client_id)
        fs = self._get_filesystem(name)
        mount_point = self.mount_point_path(name)

        existing = self._mounter.mount_point_of(fs.devnode)
        if existing:
            if existing == mount_point:
                _log_debug_driver("Volume %s already mounted at %s", name, mount_point)
                return mount_point
            raise VolumeConflictError(
                f"Volume {name} is mounted at {existing} instead of {mount_point}"
            )

        prepare_mount_point(mount_point)
        self._mounter.mount(fs.devnode, mount_point, STRATIS_FSTYPE)

        _log_info("Mounted volume %s (%s) at %s", name, fs.devnode, mount_point)
        return mount_point

    @_with_driver_lock
    def unmount(self, name: str, client_id: str = ""):
        """
        Unmount a volume. Unmounting a volume that is not mounted succeeds.

        :param name: The volume name.
        :param client_id: The identifier of the requesting client.
        :raises: ``VolumeNotFoundError`` if the volume does not exist or
                 ``VolumeConflictError`` if it is mounted elsewhere.
        """
        _log_debug_driver("Unmounting volume %s (id=%s)", name, client_id)
        fs = self._get_filesystem(name)
        mount_point = self.mount_point_path(name)

        existing = self._mounter.mount_point_of(fs.devnode)
        if not existing:
            _log_debug_driver("Volume %s is not mounted", name)
            return

        if existing != mount_point:
            raise VolumeConflictError(
                f"Volume {name} is mounted at {existing} instead of "
                f"expected {mount_point}"
            )

        self._mounter.unmount(mount_point)
        remove_mount_point(mount_point)
        _log_info("Unmounted volume %s", name)

    @_with_driver_lock
    def path(self, name: str) -> str:
        """
        Return the mount point of a mounted volume.

        :param name: The volume name.
        :returns: The mount point path.
        :raises: ``VolumeNotFoundError`` if the volume does not exist or
                 ``VolumeConflictError`` if it is not mounted at its
                 canonical mount point.
        """
        _log_debug_driver("Getting path of volume %s", name)
        fs = self._get_filesystem(name)
        mount_point = self.mount_point_path(name)

        existing = self._mounter.mount_point_of(fs.devnode)
        if not existing:
            raise VolumeConflictError(f"Volume {name} is not mounted")
        if existing != mount_point:
            raise VolumeConflictError(
                f"Volume {name} is mounted at {existing} instead of "
                f"expected {mount_point}"
            )
        return mount_point

    @_with_driver_lock
    def get(self, name: str) -> Volume:
        """
        Return a volume and its status.

        :param name: The volume name.
        :returns: A ``Volume`` with a status dictionary.
        """
        _log_debug_driver("Getting volume %s", name)
        fs = self._get_filesystem(name)
        return Volume(
            name=name,
            mountpoint=self._mounted_at(fs),
            status=_status_from_filesystem(fs),
        )

    @_with_driver_lock
    def list(self) -> List[Volume]:
        """
        Return all volumes in the pool.
        """
        _log_debug_driver("Listing volumes")
        return [
            Volume(name=fs.name, mountpoint=self._mounted_at(fs))
            for fs in self._manager.list()
        ]

    def capabilities(self) -> Dict[str, str]:
        """
        Return the capabilities of this driver.
        """
        return {"Scope": SCOPE_LOCAL}


__all__ = [
    "OPT_SIZE",
    "SCOPE_LOCAL",
    "Volume",
    "VolumeDriver",
]
