# Copyright Red Hat
#
# stratis_volume/driver/__init__.py - Stratis volume driver package
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume driver and mount support.
"""
from ._mounts import *  # noqa: F401,F403
from ._mounts import __all__ as _mounts_all
from ._driver import *  # noqa: F401,F403
from ._driver import __all__ as _driver_all

__all__ = _mounts_all + _driver_all
