# Copyright Red Hat
#
# tests/test_stratis_volume.py - stratis_volume package unit tests
#
# This file is part of the podman-volume-stratis project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
import logging

import stratis_volume

log = logging.getLogger()

ONE_KIB = 2**10
ONE_MIB = 2**20
ONE_GIB = 2**30
ONE_TIB = 2**40


class StratisVolumeTestsSimple(unittest.TestCase):
    """Test stratis_volume module"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down (%s)", self._testMethodName)
        stratis_volume.set_debug_mask(0)

    def test_set_debug_mask(self):
        stratis_volume.set_debug_mask(stratis_volume.STRATIS_VOLUME_DEBUG_ALL)
        self.assertEqual(
            stratis_volume.get_debug_mask(), stratis_volume.STRATIS_VOLUME_DEBUG_ALL
        )

    def test_set_debug_mask_bad_mask(self):
        with self.assertRaises(ValueError):
            stratis_volume.set_debug_mask(stratis_volume.STRATIS_VOLUME_DEBUG_ALL + 1)

    def test_set_debug_mask_negative(self):
        with self.assertRaises(ValueError):
            stratis_volume.set_debug_mask(-1)

    def test_SubsystemFilter(self):
        # Start with no subsystems enabled
        stratis_volume.set_debug_mask(0)
        sf = stratis_volume.SubsystemFilter("stratis_volume")
        self.assertEqual(sf.enabled_subsystems, set())
        # Enable a couple and ensure new filters initialise from cache
        stratis_volume.set_debug_mask(
            stratis_volume.STRATIS_VOLUME_DEBUG_DRIVER
            | stratis_volume.STRATIS_VOLUME_DEBUG_MOUNTS
        )
        sf2 = stratis_volume.SubsystemFilter("stratis_volume")
        self.assertIn(
            stratis_volume.STRATIS_VOLUME_SUBSYSTEM_DRIVER, sf2.enabled_subsystems
        )
        self.assertIn(
            stratis_volume.STRATIS_VOLUME_SUBSYSTEM_MOUNTS, sf2.enabled_subsystems
        )
        self.assertNotIn(
            stratis_volume.STRATIS_VOLUME_SUBSYSTEM_SERVER, sf2.enabled_subsystems
        )

    def test_SubsystemFilter_filter(self):
        sf = stratis_volume.SubsystemFilter("stratis_volume")
        sf.set_debug_subsystems([stratis_volume.STRATIS_VOLUME_SUBSYSTEM_BACKEND])

        def _record(level, subsystem=None):
            record = logging.LogRecord(
                "stratis_volume", level, __file__, 1, "msg", None, None
            )
            if subsystem:
                record.subsystem = subsystem
            return record

        self.assertTrue(sf.filter(_record(logging.INFO)))
        self.assertTrue(sf.filter(_record(logging.DEBUG)))
        self.assertTrue(
            sf.filter(
                _record(logging.DEBUG, stratis_volume.STRATIS_VOLUME_SUBSYSTEM_BACKEND)
            )
        )
        self.assertFalse(
            sf.filter(
                _record(logging.DEBUG, stratis_volume.STRATIS_VOLUME_SUBSYSTEM_DRIVER)
            )
        )
        # Subsystem tags never hide records above DEBUG.
        self.assertTrue(
            sf.filter(
                _record(logging.WARNING, stratis_volume.STRATIS_VOLUME_SUBSYSTEM_DRIVER)
            )
        )

    def test_size_fmt_zero(self):
        self.assertEqual(stratis_volume.size_fmt(0), "0B")

    def test_size_fmt_gib(self):
        self.assertEqual(stratis_volume.size_fmt(ONE_GIB), "1.0GiB")

    def test_size_fmt_yib(self):
        self.assertEqual(
            stratis_volume.size_fmt(1000000000000000000000000000), "827.2YiB"
        )

    def test_parse_size(self):
        sizes = {
            "1024": 1024,
            "512B": 512,
            "1K": 1000,
            "1KB": 1000,
            "1Ki": ONE_KIB,
            "1KiB": ONE_KIB,
            "1M": 1000**2,
            "1MB": 1000**2,
            "1Mi": ONE_MIB,
            "10MiB": 10 * ONE_MIB,
            "1G": 1000**3,
            "1GB": 1000**3,
            "1Gi": ONE_GIB,
            "1GiB": ONE_GIB,
            "2T": 2 * 1000**4,
            "2TB": 2 * 1000**4,
            "2Ti": 2 * ONE_TIB,
            "2TiB": 2 * ONE_TIB,
        }
        for size_str, value in sizes.items():
            with self.subTest(size=size_str):
                self.assertEqual(stratis_volume.parse_size(size_str), value)

    def test_parse_size_case_insensitive(self):
        self.assertEqual(stratis_volume.parse_size("1gib"), ONE_GIB)
        self.assertEqual(stratis_volume.parse_size("1GIB"), ONE_GIB)
        self.assertEqual(stratis_volume.parse_size("1mb"), 1000**2)

    def test_parse_size_whitespace(self):
        self.assertEqual(stratis_volume.parse_size("74 MiB"), 74 * ONE_MIB)
        self.assertEqual(stratis_volume.parse_size("  1 GiB  "), ONE_GIB)

    def test_parse_size_fractional(self):
        self.assertEqual(stratis_volume.parse_size("1.5GiB"), ONE_GIB + ONE_GIB // 2)
        self.assertEqual(stratis_volume.parse_size("0.5K"), 500)

    def test_parse_size_bad(self):
        for bad in ["", "   ", "abc", "GiB", "1XB", "1 Gigabyte", "1..5G", None]:
            with self.subTest(size=bad):
                with self.assertRaises(stratis_volume.VolumeSizeError):
                    stratis_volume.parse_size(bad)

    def test_parse_size_negative(self):
        with self.assertRaises(stratis_volume.VolumeSizeError):
            stratis_volume.parse_size("-1G")

    def test_parse_size_error_is_validation_error(self):
        with self.assertRaises(stratis_volume.VolumeValidationError):
            stratis_volume.parse_size("lots")

    def test_format_size(self):
        sizes = {
            ONE_GIB: "1GiB",
            2 * ONE_TIB: "2TiB",
            512 * ONE_MIB: "512MiB",
            1536 * ONE_MIB: "1536MiB",
            4 * ONE_KIB: "4KiB",
            1000: "1000B",
            1000**3: "1000000000B",
        }
        for value, size_str in sizes.items():
            with self.subTest(value=value):
                self.assertEqual(stratis_volume.format_size(value), size_str)

    def test_format_size_parses_back(self):
        for value in (ONE_GIB, 3 * ONE_MIB, 1000**3, 12345):
            size_str = stratis_volume.format_size(value)
            self.assertEqual(stratis_volume.parse_size(size_str), value)

    def test_validate_volume_name(self):
        good = [
            "ab",
            "vol1",
            "my-volume",
            "my_volume.2",
            "0day",
            "A" * stratis_volume.MAX_NAME_LEN,
        ]
        for name in good:
            with self.subTest(name=name):
                stratis_volume.validate_volume_name(name)

    def test_validate_volume_name_bad(self):
        bad = [
            "",
            "a",
            "A" * (stratis_volume.MAX_NAME_LEN + 1),
            "-volume",
            "_volume",
            ".volume",
            "vol/ume",
            "vol ume",
            "vol:ume",
            "../etc",
            "ab\n",
            "vol1\n",
            "A" * (stratis_volume.MAX_NAME_LEN - 1) + "\n",
            "\nab",
        ]
        for name in bad:
            with self.subTest(name=name):
                with self.assertRaises(stratis_volume.VolumeInvalidNameError):
                    stratis_volume.validate_volume_name(name)

    def test_derive_free(self):
        self.assertEqual(
            stratis_volume.derive_free(ONE_GIB, 74 * ONE_MIB), 950 * ONE_MIB
        )
        self.assertEqual(stratis_volume.derive_free(ONE_GIB, ONE_GIB), 0)
        self.assertEqual(stratis_volume.derive_free(ONE_MIB, ONE_GIB), 0)

    def test_error_hierarchy(self):
        self.assertTrue(
            issubclass(
                stratis_volume.VolumeExistsError, stratis_volume.VolumeConflictError
            )
        )
        self.assertTrue(
            issubclass(
                stratis_volume.VolumePathError, stratis_volume.VolumeConflictError
            )
        )
        self.assertTrue(
            issubclass(
                stratis_volume.VolumeInvalidNameError,
                stratis_volume.VolumeValidationError,
            )
        )
        for err_class in (
            stratis_volume.VolumeNotFoundError,
            stratis_volume.VolumeConflictError,
            stratis_volume.VolumeValidationError,
            stratis_volume.VolumeSystemError,
            stratis_volume.VolumeCalloutError,
            stratis_volume.VolumeBackendError,
            stratis_volume.VolumeParseError,
            stratis_volume.VolumeMountError,
            stratis_volume.VolumeUmountError,
        ):
            self.assertTrue(issubclass(err_class, stratis_volume.VolumeError))

    def test_VolumeMountError(self):
        err = stratis_volume.VolumeMountError(
            "/dev/stratis/p/v", "/mnt/v", 32, "wrong fs type"
        )
        self.assertEqual(err.status, 32)
        self.assertIn("/dev/stratis/p/v", str(err))
        self.assertIn("wrong fs type", str(err))

    def test_VolumeUmountError(self):
        err = stratis_volume.VolumeUmountError("/mnt/v", 32, "target is busy")
        self.assertEqual(err.where, "/mnt/v")
        self.assertIn("target is busy", str(err))

    def test_Filesystem_str(self):
        fs = stratis_volume.Filesystem(
            name="vol1",
            pool="pool1",
            devnode="/dev/stratis/pool1/vol1",
            total=ONE_GIB,
            used=74 * ONE_MIB,
            free=950 * ONE_MIB,
        )
        xstr = (
            "Name:           vol1\n"
            "Pool:           pool1\n"
            "Device:         /dev/stratis/pool1/vol1\n"
            "Total:          1.0GiB\n"
            "Used:           74.0MiB\n"
            "Free:           950.0MiB\n"
            "Size Limit:     None\n"
            "UUID:           "
        )
        self.assertEqual(str(fs), xstr)

    def test_Filesystem_frozen(self):
        fs = stratis_volume.Filesystem(name="vol1", pool="pool1", devnode="/dev/x")
        with self.assertRaises(AttributeError):
            fs.name = "vol2"
