# Copyright Red Hat
#
# stratis_volume/__init__.py - Stratis volume plugin package
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
"""
The stratis_volume package implements a podman volume plugin that backs
each container volume with a thin-provisioned Stratis filesystem.
"""
from ._stratis_volume import *  # noqa: F401,F403
from ._stratis_volume import __all__  # noqa: F401

__version__ = "0.1.0"
