# Copyright Red Hat
#
# stratis_volume/backends/_backend.py - Filesystem manager interface
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Filesystem manager base class and backend selection.
"""
from typing import List, Optional
import importlib
import logging

from stratis_volume import (
    STRATIS_VOLUME_SUBSYSTEM_BACKEND,
    VolumeValidationError,
    Filesystem,
)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_backend(msg, *args, **kwargs):
    """A wrapper for backend subsystem debug logs."""
    _log.debug(
        msg, *args, extra={"subsystem": STRATIS_VOLUME_SUBSYSTEM_BACKEND}, **kwargs
    )


#: Backend that drives the ``stratis`` command line tool.
BACKEND_CLI = "cli"

#: Backend that talks to stratisd over D-Bus.
BACKEND_DBUS = "dbus"

#: Map of backend names to the module implementing them.
_BACKEND_MODULES = {
    BACKEND_CLI: "stratis_volume.backends.cli",
    BACKEND_DBUS: "stratis_volume.backends.stratisd",
}

#: Valid values for the backend selector.
BACKENDS = tuple(_BACKEND_MODULES.keys())


class FilesystemManager:
    """
    Abstract base class for Stratis filesystem managers.

    A manager is bound to a single pool for its lifetime. Every query goes
    to the backend: no filesystem state is kept between calls.
    """

    name = "manager"

    def __init__(self, pool: str):
        self.pool = pool
        self.logger = _log

    def _log_error(self, *args):
        """
        Log at error level.
        """
        self.logger.error(*args)

    def _log_warn(self, *args):
        """
        Log at warning level.
        """
        self.logger.warning(*args)

    def _log_info(self, *args):
        """
        Log at info level.
        """
        self.logger.info(*args)

    def _log_debug(self, *args):
        """
        Log at debug level.
        """
        self.logger.debug(
            *args, extra={"subsystem": STRATIS_VOLUME_SUBSYSTEM_BACKEND}
        )

    def pool_exists(self) -> bool:
        """
        Test whether the configured pool exists.

        :returns: ``True`` if the pool exists or ``False`` otherwise.
        """
        raise NotImplementedError

    def list(self) -> List[Filesystem]:
        """
        Return all filesystems in the configured pool.

        :returns: A list of ``Filesystem`` objects.
        """
        raise NotImplementedError

    def get_by_name(self, name: str) -> Filesystem:
        """
        Return the filesystem named ``name``.

        :param name: The filesystem name.
        :returns: A ``Filesystem`` object.
        :raises: ``VolumeNotFoundError`` if no such filesystem exists.
        """
        raise NotImplementedError

    def create(self, name: str, size_limit: Optional[int] = None) -> Filesystem:
        """
        Create a new filesystem named ``name``.

        :param name: The name of the new filesystem.
        :param size_limit: An optional size limit in bytes. The filesystem
                           is thin provisioned without a limit if this is
                           ``None``.
        :returns: The ``Filesystem`` as reported by the backend after
                  creation.
        """
        raise NotImplementedError

    def delete(self, name: str):
        """
        Destroy the filesystem named ``name``.

        :param name: The name of the filesystem to destroy.
        """
        raise NotImplementedError

    def close(self):
        """
        Release any resources held by this manager.
        """


def get_filesystem_manager(pool: str, backend: str, **kwargs) -> FilesystemManager:
    """
    Return a ``FilesystemManager`` for ``pool`` using ``backend``.

    The backend module is imported on first use so that the D-Bus client
    stack is only loaded when the D-Bus backend is selected.

    :param pool: The Stratis pool name.
    :param backend: One of ``BACKENDS``.
    :param kwargs: Additional keyword arguments for the manager class.
    :returns: A new ``FilesystemManager`` instance.
    :raises: ``VolumeValidationError`` if ``backend`` is unknown.
    """
    if backend not in _BACKEND_MODULES:
        raise VolumeValidationError(
            f"Unknown backend: {backend} (use one of {', '.join(BACKENDS)})"
        )
    fqname = _BACKEND_MODULES[backend]
    _log_debug_backend("Importing backend module %s", fqname)
    module = importlib.import_module(fqname)
    manager = module.MANAGER_CLASS(pool, **kwargs)
    _log_debug_backend("Selected %s backend for pool %s", manager.name, pool)
    return manager


__all__ = [
    "BACKEND_CLI",
    "BACKEND_DBUS",
    "BACKENDS",
    "FilesystemManager",
    "get_filesystem_manager",
]
