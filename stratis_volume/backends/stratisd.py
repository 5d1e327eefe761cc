# Copyright Red Hat
#
# stratis_volume/backends/stratisd.py - Stratis D-Bus backend
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Filesystem manager backend talking to stratisd over D-Bus.
"""
from functools import wraps
from typing import List, Optional
from time import sleep
import threading

from dbus.exceptions import DBusException

from dbus_client_gen import DbusClientMissingPropertyError
from dbus_python_client_gen import DPClientInvocationError

from stratis_volume import (
    VolumeBackendError,
    VolumeNotFoundError,
    VolumeParseError,
    Filesystem,
    derive_free,
)

from ._backend import BACKEND_DBUS, FilesystemManager
from .stratislib import (
    StratisdConnection,
    StratisdErrors,
    TOP_OBJECT,
    MOFilesystem,
    filesystems,
    pools,
)

#: Number of times to look for a newly created filesystem.
CREATE_POLL_ATTEMPTS = 10

#: Delay between attempts to look for a newly created filesystem (seconds).
CREATE_POLL_INTERVAL = 0.1


def _with_pool_lock(func):
    """
    Decorator for ``StratisdFilesystemManager`` methods that read or
    invalidate the cached pool object path.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:  # pylint: disable=protected-access
            return func(self, *args, **kwargs)

    return wrapper


def _optional_value(value):
    """
    Unpack a stratisd optional value: a ``(present, value)`` pair.

    :returns: ``value`` if ``present`` is true or ``None`` otherwise.
    """
    (present, inner) = value
    return inner if present else None


def _parse_bytes(value, what: str) -> int:
    """
    Convert a string encoded byte count reported by stratisd to an ``int``.
    """
    try:
        return int(str(value))
    except ValueError as err:
        raise VolumeParseError(
            f"Invalid {what} value from stratisd: '{value}'"
        ) from err


def filesystem_from_properties(pool: str, info) -> Filesystem:
    """
    Build a ``Filesystem`` from a filesystem managed object.

    :param pool: The name of the pool containing the filesystem.
    :param info: The interfaces and properties of the filesystem object as
                 returned by ``GetManagedObjects``.
    :returns: A ``Filesystem`` object.
    :raises: ``VolumeParseError`` if a required property is missing.
    """
    mofs = MOFilesystem(info)
    try:
        name = str(mofs.Name())
        devnode = str(mofs.Devnode())
    except DbusClientMissingPropertyError as err:
        raise VolumeParseError(f"Missing required filesystem property: {err}") from err
    if not name:
        raise VolumeParseError("Missing required filesystem property: Name")
    if not devnode:
        raise VolumeParseError("Missing required filesystem property: Devnode")

    def _get(prop):
        try:
            return getattr(mofs, prop)()
        except DbusClientMissingPropertyError:
            return None

    uuid = _get("Uuid")
    size = _get("Size")
    total = _parse_bytes(size, "Size") if size is not None else 0

    used = None
    if (used_value := _get("Used")) is not None:
        used = _optional_value(used_value)
    used = _parse_bytes(used, "Used") if used is not None else 0

    size_limit = None
    if (limit_value := _get("SizeLimit")) is not None:
        size_limit = _optional_value(limit_value)
    if size_limit is not None:
        size_limit = _parse_bytes(size_limit, "SizeLimit")

    return Filesystem(
        name=name,
        pool=pool,
        devnode=devnode,
        total=total,
        used=used,
        free=derive_free(total, used),
        size_limit=size_limit,
        uuid=str(uuid) if uuid is not None else "",
    )


class StratisdFilesystemManager(FilesystemManager):
    """
    Filesystem manager using the stratisd D-Bus API.

    The object path of the configured pool is cached between calls and
    invalidated by every call that creates or destroys a filesystem.
    """

    name = BACKEND_DBUS

    def __init__(
        self,
        pool: str,
        connection=None,
        poll_attempts: int = CREATE_POLL_ATTEMPTS,
        poll_interval: float = CREATE_POLL_INTERVAL,
    ):
        """
        Initialise a new ``StratisdFilesystemManager``.

        :param pool: The Stratis pool name.
        :param connection: An object providing ``call(object_path, method,
                           params)`` and ``close()``. A new
                           ``StratisdConnection`` is used if ``None``.
        :param poll_attempts: Number of lookups made for a new filesystem.
        :param poll_interval: Delay between lookups in seconds.
        """
        super().__init__(pool)
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self._lock = threading.RLock()
        self._pool_object_path = None
        if connection is None:
            try:
                connection = StratisdConnection()
            except DBusException as err:
                raise VolumeBackendError(
                    f"Failed to connect to the system bus: {err}"
                ) from err
        self._conn = connection

    def _call(self, object_path, method, params):
        try:
            return self._conn.call(object_path, method, params)
        except (DBusException, DPClientInvocationError) as err:
            raise VolumeBackendError(
                f"Failed to communicate with stratisd: {err}"
            ) from err

    def _get_managed_objects(self):
        return self._call(TOP_OBJECT, "GetManagedObjects", {})

    def invalidate_cache(self):
        """
        Forget the cached pool object path.
        """
        self._pool_object_path = None

    def _find_pool_path(self, managed_objects):
        """
        Return the object path of the configured pool.

        :param managed_objects: The result of ``GetManagedObjects`` used to
                                resolve the pool if it is not cached.
        :raises: ``VolumeNotFoundError`` if the pool does not exist.
        """
        if self._pool_object_path is not None:
            return self._pool_object_path

        found = next(pools(props={"Name": self.pool}).search(managed_objects), None)
        if found is None:
            raise VolumeNotFoundError(f"Pool {self.pool} not found")
        (self._pool_object_path, _) = found
        self._log_debug("Resolved pool %s to %s", self.pool, self._pool_object_path)
        return self._pool_object_path

    def _find_filesystem(self, managed_objects, name):
        pool_object_path = self._find_pool_path(managed_objects)
        found = next(
            filesystems(props={"Name": name, "Pool": pool_object_path}).search(
                managed_objects
            ),
            None,
        )
        if found is None:
            raise VolumeNotFoundError(f"Filesystem {self.pool}/{name} not found")
        return found

    @staticmethod
    def _check_return_code(method, return_code, message):
        if return_code != StratisdErrors.OK:
            raise VolumeBackendError(
                f"{method} failed: stratisd error (code {return_code}): {message}"
            )

    @_with_pool_lock
    def pool_exists(self) -> bool:
        self._log_debug("Checking pool %s exists", self.pool)
        try:
            self._find_pool_path(self._get_managed_objects())
        except VolumeNotFoundError:
            return False
        return True

    @_with_pool_lock
    def list(self) -> List[Filesystem]:
        self._log_debug("Listing filesystems in pool %s", self.pool)
        managed_objects = self._get_managed_objects()
        pool_object_path = self._find_pool_path(managed_objects)

        found = []
        for _, info in filesystems(props={"Pool": pool_object_path}).search(
            managed_objects
        ):
            try:
                found.append(filesystem_from_properties(self.pool, info))
            except VolumeParseError as err:
                self._log_debug("Skipping unparseable filesystem: %s", err)
        return found

    @_with_pool_lock
    def get_by_name(self, name: str) -> Filesystem:
        self._log_debug("Getting filesystem %s in pool %s", name, self.pool)
        managed_objects = self._get_managed_objects()
        (_, info) = self._find_filesystem(managed_objects, name)
        return filesystem_from_properties(self.pool, info)

    def _wait_for_filesystem(self, name):
        """
        Poll for a newly created filesystem to appear in the object graph.

        :raises: ``VolumeBackendError`` if the filesystem is not visible after
                 ``poll_attempts`` lookups.
        """
        for attempt in range(1, self.poll_attempts + 1):
            try:
                return self.get_by_name(name)
            except VolumeNotFoundError:
                self._log_debug(
                    "Filesystem %s not visible yet (attempt %d/%d)",
                    name,
                    attempt,
                    self.poll_attempts,
                )
            if attempt < self.poll_attempts:
                sleep(self.poll_interval)
        raise VolumeBackendError(
            f"Created filesystem {self.pool}/{name} did not appear after "
            f"{self.poll_attempts} attempts"
        )

    @_with_pool_lock
    def create(self, name: str, size_limit: Optional[int] = None) -> Filesystem:
        self._log_debug(
            "Creating filesystem %s in pool %s (size_limit=%s)",
            name,
            self.pool,
            size_limit,
        )
        pool_object_path = self._find_pool_path(self._get_managed_objects())

        # The initial size is set to the limit so the default initial size
        # cannot exceed it.
        has_limit = size_limit is not None
        limit = str(size_limit) if has_limit else ""
        specs = [(name, (has_limit, limit), (has_limit, limit))]

        try:
            ((_, _), return_code, message) = self._call(
                pool_object_path, "CreateFilesystems", {"specs": specs}
            )
        finally:
            self.invalidate_cache()
        self._check_return_code("CreateFilesystems", return_code, message)

        fs = self._wait_for_filesystem(name)
        self._log_debug("Created filesystem %s with device %s", name, fs.devnode)
        return fs

    @_with_pool_lock
    def delete(self, name: str):
        self._log_debug("Destroying filesystem %s in pool %s", name, self.pool)
        managed_objects = self._get_managed_objects()
        pool_object_path = self._find_pool_path(managed_objects)
        (fs_object_path, _) = self._find_filesystem(managed_objects, name)

        try:
            ((_, _), return_code, message) = self._call(
                pool_object_path,
                "DestroyFilesystems",
                {"filesystems": [fs_object_path]},
            )
        finally:
            self.invalidate_cache()
        self._check_return_code("DestroyFilesystems", return_code, message)
        self._log_debug("Destroyed filesystem %s", name)

    def close(self):
        self._conn.close()


#: The manager class provided by this backend module.
MANAGER_CLASS = StratisdFilesystemManager

__all__ = [
    "StratisdFilesystemManager",
    "filesystem_from_properties",
]
