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
Miscellaneous functions and classes for managing the D-Bus connection.
"""
# isort: THIRDPARTY
import dbus

from ._constants import SERVICE
from ._data import ObjectManager, Pool


class Bus:  # pylint: disable=too-few-public-methods
    """
    Our bus.
    """

    _BUS = None

    @staticmethod
    def get_bus():
        """
        Get our bus.
        """
        if Bus._BUS is None:
            Bus._BUS = dbus.SystemBus()

        return Bus._BUS


def get_object(object_path, bus=None):
    """
    Get an object from an object path.

    :param str object_path: an object path with a valid format
    :param bus: the bus to use, or ``None`` for the shared system bus
    :returns: the proxy object corresponding to the object path
    :rtype: ProxyObject
    """
    bus = bus if bus is not None else Bus.get_bus()
    return bus.get_object(SERVICE, object_path, introspect=False)


class StratisdConnection:
    """
    A connection to stratisd that dispatches named method calls to the
    generated client classes.
    """

    #: Map of method name to the generated class that implements it.
    _METHODS = {
        "GetManagedObjects": ObjectManager,
        "CreateFilesystems": Pool,
        "DestroyFilesystems": Pool,
    }

    def __init__(self, bus=None):
        """
        Initialise a new ``StratisdConnection``.

        :param bus: The ``dbus.Bus`` to use. A private connection to the
                    system bus is opened if ``bus`` is ``None``.
        """
        self._bus = bus if bus is not None else dbus.SystemBus(private=True)

    def call(self, object_path, method, params):
        """
        Call ``method`` on the stratisd object at ``object_path``.

        :param object_path: The D-Bus object path of the target object.
        :param method: The method name, for example "CreateFilesystems".
        :param params: A dictionary mapping argument names to values.
        :returns: The method's return value.
        :raises: ``KeyError`` if ``method`` is not a known method and
                 ``dbus.exceptions.DBusException`` on bus failures.
        """
        klass = self._METHODS[method]
        proxy = get_object(object_path, bus=self._bus)
        return getattr(klass.Methods, method)(proxy, params)

    def close(self):
        """
        Close the underlying bus connection.
        """
        self._bus.close()
