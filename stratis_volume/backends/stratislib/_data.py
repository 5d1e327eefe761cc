# Copyright 2016 Red Hat, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
XML interface specifications and generated client classes.
"""
# isort: STDLIB
import os
import xml.etree.ElementTree as ET  # nosec B405

# isort: THIRDPARTY
from dbus_client_gen import (
    DbusClientGenerationError,
    managed_object_class,
    mo_query_builder,
)
from dbus_python_client_gen import DPClientGenerationError, make_class

from ._constants import (
    DBUS_TIMEOUT_DEFAULT,
    DBUS_TIMEOUT_ENV,
    FILESYSTEM_INTERFACE,
    OBJECT_MANAGER_INTERFACE,
    POOL_INTERFACE,
)
from ._errors import StratisCliEnvironmentError, StratisCliGenerationError
from ._introspect import SPECS

#: Largest accepted D-Bus timeout in milliseconds.
_MAXIMUM_DBUS_TIMEOUT = 1 << 30


def get_timeout(value):
    """
    Turn an input str or int into a float timeout value.

    :param value: the timeout value in milliseconds, -1 for the default
    :type value: str or int
    :returns: the timeout in seconds, or -1
    :rtype: float or int
    :raises StratisCliEnvironmentError: if the value is not a valid timeout
    """
    try:
        timeout_int = int(value)
    except ValueError as err:
        raise StratisCliEnvironmentError(
            f"The timeout value provided ({value}) is not an integer."
        ) from err

    if timeout_int < -1:
        raise StratisCliEnvironmentError(
            f"The timeout value provided ({timeout_int}) is smaller than the "
            "smallest acceptable value, -1."
        )

    if timeout_int > _MAXIMUM_DBUS_TIMEOUT:
        raise StratisCliEnvironmentError(
            f"The timeout value provided ({timeout_int}) exceeds the largest "
            f"acceptable value, {_MAXIMUM_DBUS_TIMEOUT}."
        )

    return -1 if timeout_int == -1 else timeout_int / 1000


def _add_abs_path_assertion(klass, method_name, key):
    """
    Set method_name of method_klass to a new method which checks that the
    device paths values at key are absolute paths.
    """
    method_class = getattr(klass, "Methods")
    orig_method = getattr(method_class, method_name)

    def new_method(proxy, args):
        """
        New path method
        """
        rel_paths = [path for path in args[key] if not os.path.isabs(path)]
        assert (
            rel_paths == []
        ), f"Precondition violated: paths {', '.join(rel_paths)} should be absolute"
        return orig_method(proxy, args)

    setattr(method_class, method_name, new_method)


DBUS_TIMEOUT = get_timeout(os.environ.get(DBUS_TIMEOUT_ENV, DBUS_TIMEOUT_DEFAULT))

try:
    filesystem_spec = ET.fromstring(SPECS[FILESYSTEM_INTERFACE])  # nosec B314
    filesystems = mo_query_builder(filesystem_spec)
    MOFilesystem = managed_object_class("MOFilesystem", filesystem_spec)

    pool_spec = ET.fromstring(SPECS[POOL_INTERFACE])  # nosec B314
    pools = mo_query_builder(pool_spec)

    ObjectManager = make_class(
        "ObjectManager",
        ET.fromstring(SPECS[OBJECT_MANAGER_INTERFACE]),  # nosec B314
        DBUS_TIMEOUT,
    )
    Pool = make_class("Pool", pool_spec, DBUS_TIMEOUT)

    _add_abs_path_assertion(Pool, "DestroyFilesystems", "filesystems")

# Do not expect to get coverage on Generation errors.
# These can only occurs if the XML data in _introspect.py has been
# changed or the code generation libraries have changed.
except (DbusClientGenerationError, DPClientGenerationError) as err:  # pragma: no cover
    raise StratisCliGenerationError(
        "Failed to generate some class needed for invoking dbus-python methods"
    ) from err
