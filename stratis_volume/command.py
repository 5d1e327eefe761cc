# Copyright Red Hat
#
# stratis_volume/command.py - Stratis volume plugin command interface
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
The ``podman-volume-stratis`` command: parse arguments, load configuration
and serve the volume plugin.
"""
from argparse import ArgumentParser
from os.path import basename, dirname
import logging
import sys
import os

from stratis_volume import (
    STRATIS_VOLUME_DEBUG_DRIVER,
    STRATIS_VOLUME_DEBUG_BACKEND,
    STRATIS_VOLUME_DEBUG_MOUNTS,
    STRATIS_VOLUME_DEBUG_SERVER,
    STRATIS_VOLUME_DEBUG_ALL,
    SubsystemFilter,
    VolumeError,
    set_debug_mask,
    __version__,
)
from stratis_volume._config import DEFAULT_CONFIG_PATH, PluginConfig, load_config
from stratis_volume.backends import BACKENDS, get_filesystem_manager
from stratis_volume.driver import MOUNT_POINT_MODE, Mounter, VolumeDriver
from stratis_volume.server import create_app, serve

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

_DEFAULT_LOG_LEVEL = logging.WARNING
_CONSOLE_HANDLER = None


def setup_logging(cmd_args):
    """
    Set up stratis_volume logging.
    """
    # pylint: disable=global-statement
    global _CONSOLE_HANDLER
    level = _DEFAULT_LOG_LEVEL
    if cmd_args.verbose and cmd_args.verbose > 1:
        level = logging.DEBUG
    elif cmd_args.verbose and cmd_args.verbose > 0:
        level = logging.INFO

    pkg_log = logging.getLogger("stratis_volume")
    formatter = logging.Formatter("%(levelname)s - %(message)s")
    pkg_log.setLevel(level)
    if pkg_log.hasHandlers():
        pkg_log.handlers.clear()

    # Subsystem log filtering
    _subsystem_filter = SubsystemFilter("stratis_volume")

    # Main console handler
    _CONSOLE_HANDLER = logging.StreamHandler()

    _CONSOLE_HANDLER.setLevel(level)
    _CONSOLE_HANDLER.setFormatter(formatter)
    _CONSOLE_HANDLER.addFilter(_subsystem_filter)

    pkg_log.addHandler(_CONSOLE_HANDLER)


def shutdown_logging():
    """
    Shut down stratis_volume logging.
    """
    logging.shutdown()


def set_debug(debug_arg):
    """
    Set debugging mask from command line argument.
    """
    if not debug_arg:
        return

    mask_map = {
        "driver": STRATIS_VOLUME_DEBUG_DRIVER,
        "backend": STRATIS_VOLUME_DEBUG_BACKEND,
        "mounts": STRATIS_VOLUME_DEBUG_MOUNTS,
        "server": STRATIS_VOLUME_DEBUG_SERVER,
        "all": STRATIS_VOLUME_DEBUG_ALL,
    }

    mask = 0
    for name in debug_arg.split(","):
        if name not in mask_map:
            raise ValueError(f"Unknown debug option: {name}")
        mask |= mask_map[name]
    set_debug_mask(mask)


def _remove_socket(socket_path: str, best_effort: bool = False):
    """
    Remove the plugin socket at ``socket_path`` if it exists.

    :param best_effort: Log failures instead of raising ``OSError``.
    """
    try:
        os.unlink(socket_path)
        _log_debug("Removed socket %s", socket_path)
    except FileNotFoundError:
        pass
    except OSError as err:
        if not best_effort:
            raise
        _log_warn("Failed to remove socket %s on shutdown: %s", socket_path, err)


def run_plugin(config: PluginConfig) -> int:
    """
    Build the volume driver for ``config`` and serve it until the server
    exits.

    :param config: A validated ``PluginConfig``.
    :returns: The process exit status.
    """
    _log_info(
        "Starting volume plugin (pool=%s, mount_path=%s, socket=%s, backend=%s)",
        config.pool,
        config.mount_path,
        config.socket_path,
        config.backend,
    )

    try:
        os.makedirs(config.mount_path, mode=MOUNT_POINT_MODE, exist_ok=True)
    except OSError as err:
        _log_error("Failed to create mount path %s: %s", config.mount_path, err)
        return 1

    manager = get_filesystem_manager(config.pool, config.backend)
    try:
        if not manager.pool_exists():
            _log_error("Stratis pool %s does not exist", config.pool)
            return 1
        _log_debug("Stratis pool %s verified", config.pool)

        driver = VolumeDriver(config.mount_path, manager, Mounter(config.mount_path))
        app = create_app(driver)

        try:
            os.makedirs(dirname(config.socket_path), mode=0o755, exist_ok=True)
            _remove_socket(config.socket_path)
        except OSError as err:
            _log_error("Failed to prepare socket %s: %s", config.socket_path, err)
            return 1

        try:
            serve(app, config.socket_path)
        finally:
            _remove_socket(config.socket_path, best_effort=True)
    finally:
        manager.close()

    return 0


def _build_parser(prog):
    parser = ArgumentParser(
        description="Podman volume plugin backed by Stratis filesystems",
        prog=prog,
    )
    parser.add_argument(
        "-p",
        "--pool",
        metavar="POOL",
        type=str,
        help="The Stratis pool in which to create volumes",
    )
    parser.add_argument(
        "-m",
        "--mount-path",
        metavar="PATH",
        type=str,
        help="The base directory for volume mount points",
    )
    parser.add_argument(
        "-s",
        "--socket",
        metavar="SOCKET",
        type=str,
        help="The Unix socket path for the plugin",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="CONFIG",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help="The configuration file path",
    )
    parser.add_argument(
        "-b",
        "--backend",
        choices=BACKENDS,
        help="The Stratis backend to use",
    )
    parser.add_argument(
        "-d",
        "--debug",
        metavar="DEBUGOPTS",
        type=str,
        help="A list of debug options to enable",
    )
    parser.add_argument("-v", "--verbose", help="Enable verbose output", action="count")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        help="Report the version number of podman-volume-stratis",
        version=__version__,
    )
    return parser


def main(args):
    """
    Main entry point for podman-volume-stratis.
    """
    parser = _build_parser(basename(args[0]))
    cmd_args = parser.parse_args(args[1:])

    status = 1

    try:
        set_debug(cmd_args.debug)
    except ValueError as err:
        print(err)
        parser.print_help()
        return status

    setup_logging(cmd_args)

    _log_debug("Parsed %s", " ".join(args[1:]))

    try:
        config = load_config(
            cmd_args.config,
            pool=cmd_args.pool,
            mount_path=cmd_args.mount_path,
            socket_path=cmd_args.socket,
            backend=cmd_args.backend,
        )
    except VolumeError as err:
        _log_error("Invalid configuration: %s", err)
        shutdown_logging()
        return status

    if cmd_args.debug:
        status = run_plugin(config)
    else:
        try:
            status = run_plugin(config)
        except KeyboardInterrupt:  # pragma: no cover
            _log_info("Exiting on user cancel")
        except VolumeError as err:
            _log_error("Volume plugin failed: %s", err)

    shutdown_logging()
    return status


def console_main():
    """
    Console script entry point.
    """
    sys.exit(main(sys.argv))


# vim: set et ts=4 sw=4 :
