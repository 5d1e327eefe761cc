# Copyright Red Hat
#
# stratis_volume/backends/cli.py - Stratis command line backend
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Filesystem manager backend driving the ``stratis`` command line tool.
"""
from subprocess import run, CalledProcessError
from os import environ
from typing import List, Optional
import logging
import re

from stratis_volume import (
    STRATIS_VOLUME_SUBSYSTEM_BACKEND,
    SIZE_LIMIT_NONE,
    VolumeCalloutError,
    VolumeNotFoundError,
    VolumeParseError,
    VolumeSizeError,
    Filesystem,
    derive_free,
    format_size,
    parse_size,
)

from ._backend import BACKEND_CLI, FilesystemManager

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


#: The stratis command line tool
STRATIS_CMD = "stratis"
STRATIS_POOL = "pool"
STRATIS_FS = "fs"
STRATIS_LIST = "list"
STRATIS_CREATE = "create"
STRATIS_DESTROY = "destroy"
STRATIS_NAME = "--name"
STRATIS_SIZE = "--size"
STRATIS_SIZE_LIMIT = "--size-limit"

#: Environment variables removed before calling out to ``stratis``.
_STRATIS_ENV_FILTER = [
    "LANG",
    "LANGUAGE",
]

#: Error text reported by stratis when a pool or filesystem is absent.
_ABSENT_PHRASES = (
    "pool which does not exist",
    "filesystem which does not exist",
)

#: One data row of ``stratis fs list POOL``:
#: Pool   Filesystem   Total / Used / Free / Limit   Device   UUID
_TABLE_ROW_RE = re.compile(r"^(\S+)\s+(\S+)\s+(.+?)\s+(/dev/\S+)\s+(\S+)\s*$")

#: Separator between the fields of the combined size column.
_SIZE_SEP = " / "

# Keys of the detailed ``stratis fs list --name=NAME POOL`` report.
_KEY_UUID = "UUID"
_KEY_NAME = "Name"
_KEY_POOL = "Pool"
_KEY_DEVICE = "Device"
_KEY_TOTAL = "Logical size of thin device"
_KEY_USED_PREFIX = "Total used"
_KEY_FREE = "Free"
_KEY_LIMIT = "Size Limit"


def _decode_output(err):
    """
    Decode the stdout and stderr members of a ``CalledProcessError`` and
    return them joined as a single stripped string.

    :param err: A ``CalledProcessError`` like exception.
    :returns: The combined output of the failed command.
    """
    stdout = err.stdout.decode("utf8") if err.stdout else ""
    stderr = err.stderr.decode("utf8") if err.stderr else ""
    return (stdout + stderr).strip()


def is_absent_error(output: str) -> bool:
    """
    Classify the output of a failed ``stratis`` command.

    Stratis reports no structured error code on the command line, so a
    missing pool or filesystem is recognised by the text of the error.

    :param output: The combined stdout and stderr of the failed command.
    :returns: ``True`` if the output reports an absent pool or filesystem
              or ``False`` for any other failure.
    """
    return any(phrase in output for phrase in _ABSENT_PHRASES)


def _parse_cli_size(value: str, what: str) -> int:
    """
    Parse a size value as printed by stratis, e.g. "1 GiB" or "74 MiB".

    :param value: The size string.
    :param what: The name of the field, used in error messages.
    :returns: The size in bytes.
    :raises: ``VolumeParseError`` if the value cannot be parsed.
    """
    try:
        return parse_size(value)
    except VolumeSizeError as err:
        raise VolumeParseError(f"Could not parse {what} '{value}': {err}") from err


def _parse_size_limit(value: str) -> Optional[int]:
    """
    Parse a size limit field: "None" means the filesystem is unbounded.
    """
    value = value.strip()
    if value == SIZE_LIMIT_NONE:
        return None
    return _parse_cli_size(value, "size limit")


def _parse_size_info(size_info: str):
    """
    Parse the combined "Total / Used / Free / Limit" column of the
    filesystem table.

    :param size_info: The column text, e.g. "1 GiB / 74 MiB / 950 MiB / None".
    :returns: A ``(total, used, free, size_limit)`` tuple.
    :raises: ``VolumeParseError`` if the column is malformed.
    """
    parts = size_info.split(_SIZE_SEP)
    if len(parts) != 4:
        raise VolumeParseError(
            f"Expected 4 size fields separated by '{_SIZE_SEP.strip()}', "
            f"got {len(parts)}: '{size_info}'"
        )
    total = _parse_cli_size(parts[0].strip(), "total")
    used = _parse_cli_size(parts[1].strip(), "used")
    free = _parse_cli_size(parts[2].strip(), "free")
    return (total, used, free, _parse_size_limit(parts[3]))


def parse_filesystem_row(line: str) -> Filesystem:
    """
    Parse one data row of the ``stratis fs list`` table.

    :param line: The table row.
    :returns: A ``Filesystem`` object.
    :raises: ``VolumeParseError`` if the row does not match the table format.
    """
    match = _TABLE_ROW_RE.match(line)
    if not match:
        raise VolumeParseError(f"Line does not match filesystem table format: {line}")
    (pool, name, size_info, devnode, uuid) = match.groups()
    (total, used, free, size_limit) = _parse_size_info(size_info)
    return Filesystem(
        name=name,
        pool=pool,
        devnode=devnode,
        total=total,
        used=used,
        free=free,
        size_limit=size_limit,
        uuid=uuid,
    )


def parse_filesystem_table(output: str) -> List[Filesystem]:
    """
    Parse the table printed by ``stratis fs list POOL``.

    The first line is a header. Blank lines are ignored and rows that cannot
    be parsed are logged and skipped.

    :param output: The command output.
    :returns: A list of ``Filesystem`` objects.
    """
    filesystems = []
    for line in output.splitlines()[1:]:
        if not line.strip():
            continue
        try:
            filesystems.append(parse_filesystem_row(line))
        except VolumeParseError as err:
            _log_debug_backend(
                "Skipping unparseable filesystem row '%s': %s", line, err
            )
    return filesystems


def parse_filesystem_detail(output: str) -> Filesystem:
    """
    Parse the detailed report printed by ``stratis fs list --name=NAME POOL``.

    The report is a series of "Key: value" lines. Free space is derived from
    the total and used values when the report has no "Free" line.

    :param output: The command output.
    :returns: A ``Filesystem`` object.
    :raises: ``VolumeParseError`` if the report has no filesystem name.
    """
    fields = {}
    for line in output.splitlines():
        line = line.strip()
        if ":" not in line:
            continue
        (key, value) = line.split(":", maxsplit=1)
        (key, value) = (key.strip(), value.strip())
        if key.startswith(_KEY_USED_PREFIX):
            key = _KEY_USED_PREFIX
        fields[key] = value

    if not fields.get(_KEY_NAME):
        raise VolumeParseError("Failed to parse filesystem details: no name found")

    total = _parse_cli_size(fields.get(_KEY_TOTAL, "0"), "logical size")
    used = _parse_cli_size(fields.get(_KEY_USED_PREFIX, "0"), "used")
    if _KEY_FREE in fields:
        free = _parse_cli_size(fields[_KEY_FREE], "free")
    else:
        free = derive_free(total, used)

    return Filesystem(
        name=fields[_KEY_NAME],
        pool=fields.get(_KEY_POOL, ""),
        devnode=fields.get(_KEY_DEVICE, ""),
        total=total,
        used=used,
        free=free,
        size_limit=_parse_size_limit(fields.get(_KEY_LIMIT, SIZE_LIMIT_NONE)),
        uuid=fields.get(_KEY_UUID, ""),
    )


class CliFilesystemManager(FilesystemManager):
    """
    Filesystem manager using the ``stratis`` command line tool.
    """

    name = BACKEND_CLI

    def __init__(self, pool: str):
        super().__init__(pool)

        # Sanitize environment for stratis callouts.
        self._env = self._sanitize_environment()

        # Export LC_ALL=C
        self._env["LC_ALL"] = "C"

    @staticmethod
    def _sanitize_environment():
        env = environ.copy()
        for var in _STRATIS_ENV_FILTER:
            if var in env:
                env.pop(var)
        return env

    def _run(self, *popenargs, capture_output=False, check=False, **kwargs):
        """
        Thin wrapper around ``subprocess.run`` to enforce environment
        sanitization for ``stratis`` callouts.

        A caller's ``env`` keyword argument is merged with, and overrides
        values from, the sanitized environment.
        """
        kwargs["env"] = self._env | kwargs["env"] if "env" in kwargs else self._env
        return run(
            *popenargs,
            capture_output=capture_output,
            check=check,
            **kwargs,
        )

    def _stratis(self, *args) -> str:
        """
        Run ``stratis`` with ``args`` and return its standard output.

        :raises: ``VolumeNotFoundError`` if stratis reports an absent pool or
                 filesystem, or ``VolumeCalloutError`` for any other failure.
        """
        stratis_cmd_args = [STRATIS_CMD, *args]
        self._log_debug("Calling %s", " ".join(stratis_cmd_args))
        try:
            stratis_cmd = self._run(stratis_cmd_args, capture_output=True, check=True)
        except FileNotFoundError as err:
            raise VolumeCalloutError(f"Could not execute {STRATIS_CMD}: {err}") from err
        except CalledProcessError as err:
            output = _decode_output(err)
            if is_absent_error(output):
                raise VolumeNotFoundError(output) from err
            raise VolumeCalloutError(
                f"Error calling {' '.join(stratis_cmd_args)} "
                f"(status={err.returncode}): {output}"
            ) from err
        return stratis_cmd.stdout.decode("utf8")

    def pool_exists(self) -> bool:
        self._log_debug("Checking pool %s exists", self.pool)
        try:
            self._stratis(STRATIS_POOL, STRATIS_LIST, STRATIS_NAME, self.pool)
        except VolumeNotFoundError:
            return False
        return True

    def list(self) -> List[Filesystem]:
        self._log_debug("Listing filesystems in pool %s", self.pool)
        output = self._stratis(STRATIS_FS, STRATIS_LIST, self.pool)
        return parse_filesystem_table(output)

    def get_by_name(self, name: str) -> Filesystem:
        self._log_debug("Getting filesystem %s in pool %s", name, self.pool)
        try:
            output = self._stratis(
                STRATIS_FS, STRATIS_LIST, f"{STRATIS_NAME}={name}", self.pool
            )
        except VolumeNotFoundError as err:
            raise VolumeNotFoundError(
                f"Filesystem {self.pool}/{name} not found"
            ) from err
        return parse_filesystem_detail(output)

    def create(self, name: str, size_limit: Optional[int] = None) -> Filesystem:
        self._log_debug(
            "Creating filesystem %s in pool %s (size_limit=%s)",
            name,
            self.pool,
            size_limit,
        )
        stratis_cmd_args = [STRATIS_FS, STRATIS_CREATE]
        if size_limit is not None:
            size = format_size(size_limit)
            stratis_cmd_args.extend([STRATIS_SIZE, size, STRATIS_SIZE_LIMIT, size])
        stratis_cmd_args.extend([self.pool, name])

        self._stratis(*stratis_cmd_args)

        fs = self.get_by_name(name)
        self._log_debug("Created filesystem %s with device %s", name, fs.devnode)
        return fs

    def delete(self, name: str):
        self._log_debug("Destroying filesystem %s in pool %s", name, self.pool)
        self._stratis(STRATIS_FS, STRATIS_DESTROY, self.pool, name)
        self._log_debug("Destroyed filesystem %s", name)


#: The manager class provided by this backend module.
MANAGER_CLASS = CliFilesystemManager

__all__ = [
    "CliFilesystemManager",
    "is_absent_error",
    "parse_filesystem_row",
    "parse_filesystem_table",
    "parse_filesystem_detail",
]
