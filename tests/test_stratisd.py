# Copyright Red Hat
#
# tests/test_stratisd.py - Stratis D-Bus backend tests
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import patch
import logging

from dbus.exceptions import DBusException

from stratis_volume import (
    VolumeBackendError,
    VolumeNotFoundError,
    VolumeParseError,
)
from stratis_volume.backends.stratislib import (
    StratisCliEnvironmentError,
    FILESYSTEM_INTERFACE,
    POOL_INTERFACE,
    TOP_OBJECT,
)
from stratis_volume.backends.stratislib._data import get_timeout
from stratis_volume.backends.stratisd import (
    CREATE_POLL_ATTEMPTS,
    StratisdFilesystemManager,
    filesystem_from_properties,
)

from ._util import (
    FILESYSTEM_INTERFACE as FIXTURE_FILESYSTEM_INTERFACE,
    POOL_INTERFACE as FIXTURE_POOL_INTERFACE,
    FakeStratisdConnection,
    filesystem_object,
    pool_object,
    ONE_GIB,
    ONE_MIB,
    OTHER_POOL_PATH,
    POOL_NAME,
    POOL_PATH,
    TWO_GIB,
)

log = logging.getLogger()

_SLEEP = "stratis_volume.backends.stratisd.sleep"

_VOL1_PATH = "/org/storage/stratis3/11"
_VOL2_PATH = "/org/storage/stratis3/12"
_OTHER_VOL_PATH = "/org/storage/stratis3/21"


def _objects():
    return {
        POOL_PATH: pool_object(POOL_NAME),
        OTHER_POOL_PATH: pool_object("pool2"),
        _VOL1_PATH: filesystem_object("vol1"),
        _VOL2_PATH: filesystem_object(
            "vol2",
            size=str(TWO_GIB),
            used=(True, str(100 * ONE_MIB)),
            size_limit=(True, str(TWO_GIB)),
        ),
        _OTHER_VOL_PATH: filesystem_object("vol1", pool_path=OTHER_POOL_PATH),
    }


class FilesystemFromPropertiesTests(unittest.TestCase):
    """Tests for filesystem_from_properties()"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)

    def test_interfaces_match_fixtures(self):
        self.assertEqual(FIXTURE_POOL_INTERFACE, POOL_INTERFACE)
        self.assertEqual(FIXTURE_FILESYSTEM_INTERFACE, FILESYSTEM_INTERFACE)

    def test_filesystem_from_properties(self):
        fs = filesystem_from_properties(POOL_NAME, filesystem_object("vol1"))
        self.assertEqual(fs.name, "vol1")
        self.assertEqual(fs.pool, POOL_NAME)
        self.assertEqual(fs.devnode, "/dev/stratis/pool1/vol1")
        self.assertEqual(fs.total, ONE_GIB)
        self.assertEqual(fs.used, 74 * ONE_MIB)
        self.assertEqual(fs.free, 950 * ONE_MIB)
        self.assertIsNone(fs.size_limit)

    def test_filesystem_from_properties_size_limit(self):
        info = filesystem_object("vol2", size_limit=(True, str(TWO_GIB)))
        fs = filesystem_from_properties(POOL_NAME, info)
        self.assertEqual(fs.size_limit, TWO_GIB)

    def test_filesystem_from_properties_used_unknown(self):
        info = filesystem_object("vol1", used=(False, ""))
        fs = filesystem_from_properties(POOL_NAME, info)
        self.assertEqual(fs.used, 0)
        self.assertEqual(fs.free, ONE_GIB)

    def test_filesystem_from_properties_used_exceeds_size(self):
        info = filesystem_object("vol1", used=(True, str(TWO_GIB)))
        fs = filesystem_from_properties(POOL_NAME, info)
        self.assertEqual(fs.free, 0)

    def test_filesystem_from_properties_no_devnode(self):
        info = filesystem_object("vol1")
        del info[FILESYSTEM_INTERFACE]["Devnode"]
        with self.assertRaises(VolumeParseError):
            filesystem_from_properties(POOL_NAME, info)

    def test_filesystem_from_properties_empty_name(self):
        info = filesystem_object("vol1")
        info[FILESYSTEM_INTERFACE]["Name"] = ""
        with self.assertRaises(VolumeParseError):
            filesystem_from_properties(POOL_NAME, info)

    def test_filesystem_from_properties_bad_size(self):
        info = filesystem_object("vol1", size="lots")
        with self.assertRaises(VolumeParseError):
            filesystem_from_properties(POOL_NAME, info)

    def test_filesystem_from_properties_optional_missing(self):
        info = filesystem_object("vol1")
        for prop in ("Size", "Used", "SizeLimit", "Uuid"):
            del info[FILESYSTEM_INTERFACE][prop]
        fs = filesystem_from_properties(POOL_NAME, info)
        self.assertEqual(fs.total, 0)
        self.assertEqual(fs.used, 0)
        self.assertEqual(fs.uuid, "")


class StratisdFilesystemManagerTests(unittest.TestCase):
    """Tests for StratisdFilesystemManager"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.conn = FakeStratisdConnection(_objects())
        self.manager = StratisdFilesystemManager(POOL_NAME, connection=self.conn)

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)

    def test_pool_exists(self):
        self.assertTrue(self.manager.pool_exists())

    def test_pool_exists_absent(self):
        manager = StratisdFilesystemManager("nopool", connection=self.conn)
        self.assertFalse(manager.pool_exists())

    def test_list(self):
        filesystems = self.manager.list()
        self.assertEqual(sorted(fs.name for fs in filesystems), ["vol1", "vol2"])
        for fs in filesystems:
            self.assertEqual(fs.pool, POOL_NAME)

    def test_list_skips_unparseable(self):
        self.conn.objects["/org/storage/stratis3/13"] = filesystem_object(
            "vol3", size="bogus"
        )
        filesystems = self.manager.list()
        self.assertEqual(sorted(fs.name for fs in filesystems), ["vol1", "vol2"])

    def test_list_absent_pool(self):
        manager = StratisdFilesystemManager("nopool", connection=self.conn)
        with self.assertRaises(VolumeNotFoundError):
            manager.list()

    def test_get_by_name(self):
        fs = self.manager.get_by_name("vol2")
        self.assertEqual(fs.size_limit, TWO_GIB)
        self.assertEqual(fs.used, 100 * ONE_MIB)
        self.assertEqual(self.conn.calls[0][0], TOP_OBJECT)

    def test_get_by_name_only_matches_own_pool(self):
        manager = StratisdFilesystemManager("pool2", connection=self.conn)
        fs = manager.get_by_name("vol1")
        self.assertEqual(fs.pool, "pool2")
        with self.assertRaises(VolumeNotFoundError):
            manager.get_by_name("vol2")

    def test_get_by_name_absent(self):
        with self.assertRaises(VolumeNotFoundError):
            self.manager.get_by_name("vol9")

    def test_pool_path_cached(self):
        self.manager.get_by_name("vol1")
        # Remove the pool object: the cached path is still used.
        self.conn.objects.pop(POOL_PATH)
        self.manager.get_by_name("vol1")
        self.manager.invalidate_cache()
        with self.assertRaises(VolumeNotFoundError):
            self.manager.get_by_name("vol1")

    @patch(_SLEEP)
    def test_create(self, sleep_mock):
        fs = self.manager.create("vol3")
        self.assertEqual(fs.name, "vol3")
        self.assertEqual(fs.devnode, "/dev/stratis/pool1/vol3")
        sleep_mock.assert_not_called()
        (object_path, _, params) = self.conn.method_calls("CreateFilesystems")[0]
        self.assertEqual(object_path, POOL_PATH)
        self.assertEqual(params, {"specs": [("vol3", (False, ""), (False, ""))]})

    @patch(_SLEEP)
    def test_create_size_limit(self, sleep_mock):
        fs = self.manager.create("vol3", size_limit=TWO_GIB)
        self.assertEqual(fs.size_limit, TWO_GIB)
        self.assertEqual(fs.total, TWO_GIB)
        (_, _, params) = self.conn.method_calls("CreateFilesystems")[0]
        limit = str(TWO_GIB)
        self.assertEqual(params, {"specs": [("vol3", (True, limit), (True, limit))]})

    @patch(_SLEEP)
    def test_create_delayed_visibility(self, sleep_mock):
        for delay in (1, 5, CREATE_POLL_ATTEMPTS - 1):
            with self.subTest(delay=delay):
                sleep_mock.reset_mock()
                conn = FakeStratisdConnection(_objects(), visible_after=delay)
                manager = StratisdFilesystemManager(POOL_NAME, connection=conn)
                fs = manager.create("vol3")
                self.assertEqual(fs.name, "vol3")
                self.assertEqual(sleep_mock.call_count, delay)

    @patch(_SLEEP)
    def test_create_never_visible(self, sleep_mock):
        conn = FakeStratisdConnection(_objects(), visible_after=CREATE_POLL_ATTEMPTS)
        manager = StratisdFilesystemManager(POOL_NAME, connection=conn)
        with self.assertRaises(VolumeBackendError) as cm:
            manager.create("vol3")
        self.assertIn("did not appear", str(cm.exception))
        # No sleep after the final attempt.
        self.assertEqual(sleep_mock.call_count, CREATE_POLL_ATTEMPTS - 1)
        sleep_mock.assert_called_with(0.1)

    @patch(_SLEEP)
    def test_create_error_return_code(self, sleep_mock):
        conn = FakeStratisdConnection(
            _objects(), return_code=1, message="Pool is out of space"
        )
        manager = StratisdFilesystemManager(POOL_NAME, connection=conn)
        with self.assertRaises(VolumeBackendError) as cm:
            manager.create("vol3")
        self.assertIn("Pool is out of space", str(cm.exception))
        self.assertIsNone(manager._pool_object_path)
        sleep_mock.assert_not_called()

    def _fail_method(self, failing_method):
        real_call = self.conn.call

        def _call(object_path, method, params):
            if method == failing_method:
                raise DBusException("org.freedesktop.DBus.Error.NoReply")
            return real_call(object_path, method, params)

        return patch.object(self.conn, "call", side_effect=_call)

    @patch(_SLEEP)
    def test_create_bus_error_invalidates_cache(self, sleep_mock):
        self.manager.get_by_name("vol1")
        self.assertEqual(self.manager._pool_object_path, POOL_PATH)
        with self._fail_method("CreateFilesystems"):
            with self.assertRaises(VolumeBackendError):
                self.manager.create("vol3")
        self.assertIsNone(self.manager._pool_object_path)
        sleep_mock.assert_not_called()

    def test_delete_bus_error_invalidates_cache(self):
        self.manager.get_by_name("vol1")
        with self._fail_method("DestroyFilesystems"):
            with self.assertRaises(VolumeBackendError):
                self.manager.delete("vol1")
        self.assertIsNone(self.manager._pool_object_path)
        self.assertIn(_VOL1_PATH, self.conn.objects)

    def test_create_absent_pool(self):
        manager = StratisdFilesystemManager("nopool", connection=self.conn)
        with self.assertRaises(VolumeNotFoundError):
            manager.create("vol3")
        self.assertEqual(self.conn.method_calls("CreateFilesystems"), [])

    def test_delete(self):
        self.manager.delete("vol1")
        (object_path, _, params) = self.conn.method_calls("DestroyFilesystems")[0]
        self.assertEqual(object_path, POOL_PATH)
        self.assertEqual(params, {"filesystems": [_VOL1_PATH]})
        self.assertNotIn(_VOL1_PATH, self.conn.objects)
        self.assertIsNone(self.manager._pool_object_path)
        with self.assertRaises(VolumeNotFoundError):
            self.manager.get_by_name("vol1")

    def test_delete_absent(self):
        with self.assertRaises(VolumeNotFoundError):
            self.manager.delete("vol9")
        self.assertEqual(self.conn.method_calls("DestroyFilesystems"), [])

    def test_delete_error_return_code(self):
        self.conn.return_code = 1
        self.conn.message = "Filesystem is busy"
        with self.assertRaises(VolumeBackendError):
            self.manager.delete("vol1")

    def test_bus_error(self):
        with patch.object(
            self.conn, "call", side_effect=DBusException("org.freedesktop.DBus.Error")
        ):
            with self.assertRaises(VolumeBackendError) as cm:
                self.manager.list()
        self.assertIn("Failed to communicate with stratisd", str(cm.exception))

    def test_close(self):
        self.manager.close()
        self.assertTrue(self.conn.closed)


class DbusTimeoutTests(unittest.TestCase):
    """Tests for the D-Bus timeout setting"""

    def test_get_timeout(self):
        self.assertEqual(get_timeout("120000"), 120.0)
        self.assertEqual(get_timeout(500), 0.5)
        self.assertEqual(get_timeout("-1"), -1)

    def test_get_timeout_bad(self):
        for value in ("soon", "-2", str(2**31)):
            with self.subTest(value=value):
                with self.assertRaises(StratisCliEnvironmentError):
                    get_timeout(value)
