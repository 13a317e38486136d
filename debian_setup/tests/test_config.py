# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import tempfile
import unittest
from pathlib import Path

from debian_setup.config import _read_config
from debian_setup.config import split_list


class TestReadConfig(unittest.TestCase):

    def setUp(self):
        self._dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._dir.cleanup)
        self._packaged = Path(self._dir.name, 'config.ini')
        self._packaged.write_text(
            '[defaults]\n'
            'mariadb_primary = 192.168.1.221\n'
            'mariadb_version = 11.4\n'
            '[admin-*;v2]\n'
            'mariadb_version = 11.8\n')
        self._operator = Path(self._dir.name, 'operator.ini')

    def test_defaults_only(self):
        config = _read_config(self._packaged, host='laptop')
        self.assertEqual(config['mariadb_version'], '11.4')

    def test_host_mask_and_version(self):
        config = _read_config(self._packaged, host='admin-01')
        self.assertEqual(config['mariadb_version'], '11.8')

    def test_operator_overrides_same_version(self):
        self._operator.write_text('[defaults]\nmariadb_primary = 10.0.0.5\n')
        config = _read_config(self._packaged, self._operator, host='laptop')
        self.assertEqual(config['mariadb_primary'], '10.0.0.5')
        self.assertEqual(config['mariadb_version'], '11.4')

    def test_newer_packaged_value_wins(self):
        self._operator.write_text('[admin-*;v1]\nmariadb_version = 10.11\n')
        config = _read_config(self._packaged, self._operator, host='admin-01')
        self.assertEqual(config['mariadb_version'], '11.8')

    def test_missing_operator_file(self):
        config = _read_config(self._packaged, Path(self._dir.name, 'absent.ini'), host='laptop')
        self.assertEqual(config['mariadb_primary'], '192.168.1.221')


class TestSplitList(unittest.TestCase):

    def test_split(self):
        self.assertEqual(split_list('a,b\n  c # comment\n#d\n'), ['a', 'b', 'c'])
        self.assertEqual(split_list(''), [])


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
