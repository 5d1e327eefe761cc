# Copyright Red Hat
#
# stratis_volume/backends/__init__.py - Stratis filesystem backends
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Stratis filesystem manager backends.
"""
from ._backend import *  # noqa: F401,F403
from ._backend import __all__  # noqa: F401
