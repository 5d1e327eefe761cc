# Copyright Red Hat
#
# stratis_volume/_stratis_volume.py - Stratis volume plugin global definitions
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level stratis_volume package.
"""
from dataclasses import dataclass
from typing import Optional
import logging
import math
import re

_log = logging.getLogger("stratis_volume")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Debugging subsystem mask
STRATIS_VOLUME_DEBUG_DRIVER = 1
STRATIS_VOLUME_DEBUG_BACKEND = 2
STRATIS_VOLUME_DEBUG_MOUNTS = 4
STRATIS_VOLUME_DEBUG_SERVER = 8
STRATIS_VOLUME_DEBUG_ALL = (
    STRATIS_VOLUME_DEBUG_DRIVER
    | STRATIS_VOLUME_DEBUG_BACKEND
    | STRATIS_VOLUME_DEBUG_MOUNTS
    | STRATIS_VOLUME_DEBUG_SERVER
)

# Debugging subsystem names
STRATIS_VOLUME_SUBSYSTEM_DRIVER = "stratis_volume.driver"
STRATIS_VOLUME_SUBSYSTEM_BACKEND = "stratis_volume.backend"
STRATIS_VOLUME_SUBSYSTEM_MOUNTS = "stratis_volume.mounts"
STRATIS_VOLUME_SUBSYSTEM_SERVER = "stratis_volume.server"

_DEBUG_MASK_TO_SUBSYSTEM = {
    STRATIS_VOLUME_DEBUG_DRIVER: STRATIS_VOLUME_SUBSYSTEM_DRIVER,
    STRATIS_VOLUME_DEBUG_BACKEND: STRATIS_VOLUME_SUBSYSTEM_BACKEND,
    STRATIS_VOLUME_DEBUG_MOUNTS: STRATIS_VOLUME_SUBSYSTEM_MOUNTS,
    STRATIS_VOLUME_DEBUG_SERVER: STRATIS_VOLUME_SUBSYSTEM_SERVER,
}

_debug_subsystems = set()

#: Minimum length of a volume name
MIN_NAME_LEN = 2

#: Maximum length of a volume name
MAX_NAME_LEN = 65

#: Volume names start with an alphanumeric character followed by
#: alphanumerics, underscores, dots or hyphens.
_NAME_RE = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9_.-]*")

_SIZE_RE = re.compile(r"^(?P<size>[+-]?[0-9]*\.?[0-9]+)\s*(?P<units>[A-Za-z]*)$")

#: Decimal suffixes are powers of 1000, binary ("i") suffixes powers of 1024.
_SIZE_SUFFIXES = {
    "": 1,
    "B": 1,
    "K": 1000,
    "KB": 1000,
    "KI": 2**10,
    "KIB": 2**10,
    "M": 1000**2,
    "MB": 1000**2,
    "MI": 2**20,
    "MIB": 2**20,
    "G": 1000**3,
    "GB": 1000**3,
    "GI": 2**30,
    "GIB": 2**30,
    "T": 1000**4,
    "TB": 1000**4,
    "TI": 2**40,
    "TIB": 2**40,
}

#: Binary units used when formatting sizes for backend requests, largest first.
_FORMAT_SUFFIXES = [
    ("TiB", 2**40),
    ("GiB", 2**30),
    ("MiB", 2**20),
    ("KiB", 2**10),
]

#: Value of the size limit fields that means "no limit".
SIZE_LIMIT_NONE = "None"


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        # For subsystem-specific DEBUG messages, check if the subsystem is enabled.
        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``stratis_volume`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    pkg_log = logging.getLogger("stratis_volume")

    for handler in pkg_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``stratis_volume`` package.

    :param mask: the logical OR of the ``STRATIS_VOLUME_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > STRATIS_VOLUME_DEBUG_ALL:
        raise ValueError(f"Invalid debug mask: {mask}")

    enabled_subsystems = []
    for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items():
        if mask & flag:
            enabled_subsystems.append(subsystem_name)

    pkg_log = logging.getLogger("stratis_volume")
    for handler in pkg_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


#
# Exception types
#


class VolumeError(Exception):
    """
    Base class for volume plugin errors.
    """


class VolumeNotFoundError(VolumeError):
    """
    The requested volume, filesystem or pool does not exist.
    """


class VolumeConflictError(VolumeError):
    """
    The current state of a volume does not allow the operation.
    """


class VolumeExistsError(VolumeConflictError):
    """
    A volume with the requested name already exists.
    """


class VolumePathError(VolumeConflictError):
    """
    A mount point path is unusable: not a directory, not empty, or outside
    the base mount directory.
    """


class VolumeValidationError(VolumeError):
    """
    A request argument failed validation.
    """


class VolumeInvalidNameError(VolumeValidationError):
    """
    An invalid volume name was given.
    """


class VolumeSizeError(VolumeValidationError):
    """
    A malformed size expression was given.
    """


class VolumeSystemError(VolumeError):
    """
    An error when calling the operating system.
    """


class VolumeCalloutError(VolumeError):
    """
    An error calling out to an external program.
    """


class VolumeBackendError(VolumeError):
    """
    An error communicating with, or reported by, the Stratis daemon.
    """


class VolumeParseError(VolumeError):
    """
    Output from a backend could not be parsed.
    """


class VolumeMountError(VolumeError):
    """
    An error performing a mount operation.
    """

    def __init__(self, what: str, where: str, status: int, stderr: str):
        """
        Initialise a new `VolumeMountError` exception.

        :param what: The source for the failed mount operation.
        :param where: The intended mount point of the operation.
        :param status: The exit status of the mount(8) program.
        :param stderr: The error message from mount(8).
        """
        self.what, self.where, self.status, self.stderr = what, where, status, stderr
        msg = f"Failed to mount {what} to {where} (status={status}): {stderr}"
        super().__init__(msg)


class VolumeUmountError(VolumeError):
    """
    An error performing an unmount operation.
    """

    def __init__(self, where: str, status: int, stderr: str):
        """
        Initialise a new `VolumeUmountError` exception.

        :param where: The mount point for the failed umount operation.
        :param status: The exit status of the umount(8) program.
        :param stderr: The error message from umount(8).
        """
        self.where, self.status, self.stderr = where, status, stderr
        msg = f"Failed to unmount {where} (status={status}): {stderr}"
        super().__init__(msg)


def size_fmt(value):
    """
    Format a size in bytes as a human readable string.

    :param value: The integer value to format.
    :returns: A human readable string reflecting value.
    """
    suffixes = ["B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB"]
    if value == 0:
        return "0B"
    magnitude = math.floor(math.log(abs(value), 1024))
    val = value / math.pow(1024, magnitude)
    if magnitude > 7:
        return f"{val:.1f}YiB"
    return f"{val:3.1f}{suffixes[magnitude]}"


def parse_size(value: str) -> int:
    """
    Parse a size string with optional unit suffix and return a value in bytes.

    Units are case-insensitive. Decimal units (K, M, G, T, optionally
    followed by "B") are powers of 1000 and binary units (Ki, Mi, Gi, Ti,
    optionally followed by "B") are powers of 1024. A bare "B" or no suffix
    means bytes. Whitespace between the number and the unit is allowed and
    fractional values are truncated to whole bytes.

    :param value: The size string to parse.
    :returns: an integer size in bytes.
    :raises: ``VolumeSizeError`` if the string could not be parsed as a valid
             size value.
    """
    value = value.strip() if value else ""
    if not value:
        raise VolumeSizeError("Empty size expression")
    match = _SIZE_RE.search(value)
    if match is None:
        raise VolumeSizeError(f"Malformed size expression: '{value}'")
    (size, unit) = (float(match.group("size")), match.group("units").upper())
    if size < 0:
        raise VolumeSizeError(f"Size cannot be negative: '{value}'")
    if unit not in _SIZE_SUFFIXES:
        raise VolumeSizeError(f"Unknown size unit '{match.group('units')}': '{value}'")
    return int(size * _SIZE_SUFFIXES[unit])


def format_size(value: int) -> str:
    """
    Format a size in bytes for a backend create request.

    Use the largest binary unit that divides ``value`` exactly, or plain
    bytes if there is none.

    :param value: The size in bytes.
    :returns: A string such as "1GiB", "512MiB" or "1000B".
    """
    for suffix, multiplier in _FORMAT_SUFFIXES:
        if value >= multiplier and value % multiplier == 0:
            return f"{value // multiplier}{suffix}"
    return f"{value}B"


def validate_volume_name(name: str):
    """
    Check that ``name`` is a valid volume name.

    Valid names are between ``MIN_NAME_LEN`` and ``MAX_NAME_LEN`` characters
    long, begin with an alphanumeric character and otherwise contain only
    alphanumerics, underscores, dots and hyphens.

    :param name: The volume name to check.
    :raises: ``VolumeInvalidNameError`` if the name is not valid.
    """
    if not name or len(name) < MIN_NAME_LEN:
        raise VolumeInvalidNameError(
            f"Volume name must be at least {MIN_NAME_LEN} characters"
        )
    if len(name) > MAX_NAME_LEN:
        raise VolumeInvalidNameError(
            f"Volume name must be at most {MAX_NAME_LEN} characters"
        )
    if not _NAME_RE.fullmatch(name):
        raise VolumeInvalidNameError(
            f"Invalid volume name '{name}': names must start with an alphanumeric "
            "character and contain only alphanumeric, underscore, dot, or hyphen "
            "characters"
        )


def derive_free(total: int, used: int) -> int:
    """
    Return the free space for a filesystem of size ``total`` with ``used``
    bytes in use, or zero if usage exceeds the reported size.
    """
    return total - used if used <= total else 0


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class Filesystem:
    """
    A Stratis filesystem as reported by a backend.

    Instances are snapshots of backend state at the time of the query and
    are never updated in place.
    """

    #: The filesystem name (the volume name).
    name: str
    #: The name of the pool containing the filesystem.
    pool: str
    #: Path to the filesystem block device.
    devnode: str
    #: Logical size of the thin device in bytes.
    total: int = 0
    #: Space in use in bytes.
    used: int = 0
    #: Free space in bytes.
    free: int = 0
    #: Optional size limit in bytes, or ``None`` if unbounded.
    size_limit: Optional[int] = None
    #: The filesystem UUID.
    uuid: str = ""

    def __str__(self):
        limit = size_fmt(self.size_limit) if self.size_limit is not None else "None"
        return (
            f"Name:           {self.name}\n"
            f"Pool:           {self.pool}\n"
            f"Device:         {self.devnode}\n"
            f"Total:          {size_fmt(self.total)}\n"
            f"Used:           {size_fmt(self.used)}\n"
            f"Free:           {size_fmt(self.free)}\n"
            f"Size Limit:     {limit}\n"
            f"UUID:           {self.uuid}"
        )


__all__ = [
    "STRATIS_VOLUME_DEBUG_DRIVER",
    "STRATIS_VOLUME_DEBUG_BACKEND",
    "STRATIS_VOLUME_DEBUG_MOUNTS",
    "STRATIS_VOLUME_DEBUG_SERVER",
    "STRATIS_VOLUME_DEBUG_ALL",
    # Debug logging - subsystem name interface
    "STRATIS_VOLUME_SUBSYSTEM_DRIVER",
    "STRATIS_VOLUME_SUBSYSTEM_BACKEND",
    "STRATIS_VOLUME_SUBSYSTEM_MOUNTS",
    "STRATIS_VOLUME_SUBSYSTEM_SERVER",
    "MIN_NAME_LEN",
    "MAX_NAME_LEN",
    "SIZE_LIMIT_NONE",
    "SubsystemFilter",
    "set_debug_mask",
    "get_debug_mask",
    "VolumeError",
    "VolumeNotFoundError",
    "VolumeConflictError",
    "VolumeExistsError",
    "VolumePathError",
    "VolumeValidationError",
    "VolumeInvalidNameError",
    "VolumeSizeError",
    "VolumeSystemError",
    "VolumeCalloutError",
    "VolumeBackendError",
    "VolumeParseError",
    "VolumeMountError",
    "VolumeUmountError",
    "size_fmt",
    "parse_size",
    "format_size",
    "validate_volume_name",
    "derive_free",
    "Filesystem",
]
