# Copyright Red Hat
#
# stratis_volume/_config.py - Stratis volume plugin configuration
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Plugin configuration.
"""
from dataclasses import dataclass, replace
from os.path import exists
from typing import Optional
import logging
import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from stratis_volume import VolumeValidationError
from stratis_volume.backends import BACKENDS, BACKEND_DBUS

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Default location of the plugin configuration file.
DEFAULT_CONFIG_PATH = "/etc/containers/plugin-volume-stratis.conf"

#: Default base directory for volume mount points.
DEFAULT_MOUNT_PATH = "/mnt"

#: Default Unix socket path for the plugin.
DEFAULT_SOCKET_PATH = "/run/podman/plugins/volume-stratis.sock"

#: Default filesystem manager backend.
DEFAULT_BACKEND = BACKEND_DBUS

#: Configuration file keys and the ``PluginConfig`` fields they set.
_CFG_KEYS = {
    "pool": "pool",
    "mount_path": "mount_path",
    "socket": "socket_path",
    "backend": "backend",
}


@dataclass(frozen=True)
class PluginConfig:
    """
    Plugin configuration.
    """

    pool: str = ""
    mount_path: str = DEFAULT_MOUNT_PATH
    socket_path: str = DEFAULT_SOCKET_PATH
    backend: str = DEFAULT_BACKEND

    @classmethod
    def from_file(cls, config_file: str) -> "PluginConfig":
        """
        Load ``PluginConfig`` from a TOML configuration file located at
        ``config_file``.

        The file holds the top-level keys ``pool``, ``mount_path``,
        ``socket`` and ``backend``. Values that are unset or empty in the
        file take their defaults and unknown keys are ignored. A missing
        file yields the default configuration.

        :param config_file: path to plugin-volume-stratis.conf
        :type config_file: ``str``.
        :returns: A ``PluginConfig`` instance initialised from ``config_file``.
        :rtype: ``PluginConfig``
        :raises: ``VolumeValidationError`` if the file cannot be read or
                 parsed, or a known key does not hold a string.
        """
        if not exists(config_file):
            _log_debug("Configuration file '%s' not found", config_file)
            return PluginConfig()

        _log_debug("Loading configuration from '%s'", config_file)
        try:
            with open(config_file, "rb") as fp:
                cfg = tomllib.load(fp)
        except OSError as err:
            raise VolumeValidationError(
                f"Failed to read configuration file '{config_file}': {err}"
            ) from err
        except tomllib.TOMLDecodeError as err:
            raise VolumeValidationError(
                f"Failed to parse configuration file '{config_file}': {err}"
            ) from err

        values = {}
        for key, attr in _CFG_KEYS.items():
            if key not in cfg:
                continue
            value = cfg[key]
            if not isinstance(value, str):
                raise VolumeValidationError(
                    f"Invalid value for '{key}' in configuration file "
                    f"'{config_file}': expected a string"
                )
            value = value.strip()
            if value:
                values[attr] = value

        return PluginConfig(**values)

    def merge(
        self,
        pool: Optional[str] = None,
        mount_path: Optional[str] = None,
        socket_path: Optional[str] = None,
        backend: Optional[str] = None,
    ) -> "PluginConfig":
        """
        Return a new ``PluginConfig`` with the given values overriding the
        values of this configuration. Empty or ``None`` values are ignored.
        """
        overrides = {
            attr: value
            for attr, value in (
                ("pool", pool),
                ("mount_path", mount_path),
                ("socket_path", socket_path),
                ("backend", backend),
            )
            if value
        }
        return replace(self, **overrides)

    def validate(self):
        """
        Check that this configuration is complete and valid.

        :raises: ``VolumeValidationError`` if no pool is set or the backend
                 is unknown.
        """
        if not self.pool:
            raise VolumeValidationError(
                "Pool name is required (use --pool or set 'pool' in the "
                "configuration file)"
            )
        if self.backend not in BACKENDS:
            raise VolumeValidationError(
                f"Backend must be one of {', '.join(BACKENDS)}, got '{self.backend}'"
            )


def load_config(config_file: str = DEFAULT_CONFIG_PATH, **overrides) -> PluginConfig:
    """
    Load, merge and validate the plugin configuration.

    :param config_file: The path to the configuration file.
    :param overrides: Command line values that take precedence over the
                      configuration file.
    :returns: A validated ``PluginConfig``.
    """
    config = PluginConfig.from_file(config_file).merge(**overrides)
    config.validate()
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MOUNT_PATH",
    "DEFAULT_SOCKET_PATH",
    "DEFAULT_BACKEND",
    "PluginConfig",
    "load_config",
]
