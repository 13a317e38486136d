# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from debian_setup._core import Run
from debian_setup.mariadb import _sql
from debian_setup.mariadb._cluster import Cluster
from debian_setup.mariadb._cluster import Role
from debian_setup.mariadb._cluster import UnknownRole
from debian_setup.mariadb._cluster import bind_address
from debian_setup.mariadb._cluster import server_id
from debian_setup.mariadb._commands import CopyBackup
from debian_setup.mariadb._commands import GtidPosition
from debian_setup.mariadb._commands import RestoreBackup
from debian_setup.mariadb._commands import Sql
from debian_setup.mariadb._commands import TakeBackup
from debian_setup.mariadb._commands import data_timeout
from debian_setup.mariadb._commands import render_server_config
from debian_setup.mariadb._status import MalformedBinlogInfo
from debian_setup.mariadb._status import ReplicaDidNotCatchUp
from debian_setup.mariadb._status import is_replicating
from debian_setup.mariadb._status import parse_binlog_info
from debian_setup.mariadb._status import parse_vertical
from debian_setup.mariadb._status import seconds_behind
from debian_setup.mariadb._status import wait_for_sync

_slave_status = '''\
*************************** 1. row ***************************
                Slave_IO_State: Waiting for master to send event
                   Master_Host: 192.168.1.221
                   Master_User: repl
               Slave_IO_Running: Yes
              Slave_SQL_Running: Yes
                    Last_Error:
          Seconds_Behind_Master: 0
                    Gtid_IO_Pos: 0-1221-4057
'''


class TestCluster(unittest.TestCase):

    def test_from_config(self):
        cluster = Cluster.from_config({
            'mariadb_primary': '192.168.1.221',
            'mariadb_replicas': '192.168.1.223, 192.168.1.224',
            'mariadb_ssh_user': 'admin',
            'mariadb_base_dir': '/srv/mysql/',
            })
        self.assertEqual(cluster.primary, '192.168.1.221')
        self.assertEqual(cluster.replicas, ['192.168.1.223', '192.168.1.224'])
        self.assertEqual(cluster.repl_user, 'repl')
        self.assertEqual(cluster.base_dir, '/srv/mysql')
        self.assertEqual(cluster.backup_base_dir, '/srv/mysql/backups')
        self.assertEqual(cluster.ssh_host('192.168.1.223'), 'admin@192.168.1.223')

    def test_no_replicas(self):
        cluster = Cluster.from_config({'mariadb_primary': '10.0.0.1'})
        self.assertEqual(cluster.replicas, [])

    def test_server_id(self):
        self.assertEqual(server_id('192.168.1.221'), 1221)
        self.assertEqual(server_id('192.168.1.5'), 1005)
        self.assertEqual(server_id('10.0.12.5'), 12005)
        self.assertNotEqual(server_id('192.168.1.223'), server_id('192.168.1.224'))

    def test_role(self):
        self.assertEqual(Role.parse('PRIMARY'), Role.PRIMARY)
        self.assertEqual(Role.parse(' replica '), Role.REPLICA)
        with self.assertRaises(UnknownRole):
            Role.parse('slave')

    def test_bind_address(self):
        self.assertEqual(bind_address('192.168.1.221', Role.PRIMARY), '192.168.1.221')
        self.assertEqual(bind_address('192.168.1.223', Role.REPLICA), '127.0.0.1')


class TestServerConfig(unittest.TestCase):

    def setUp(self):
        self.cluster = Cluster('192.168.1.221', ['192.168.1.223'])

    def _active_lines(self, text):
        return [line for line in text.splitlines() if line and not line.startswith('#')]

    def test_primary(self):
        text = render_server_config(self.cluster, '192.168.1.221', Role.PRIMARY)
        active = self._active_lines(text)
        self.assertIn('server-id                     = 1221', active)
        self.assertIn('binlog_format                 = ROW', active)
        self.assertIn('bind-address                  = 192.168.1.221', active)
        self.assertNotIn('read_only                     = ON', active)
        self.assertIn('# read_only                     = ON', text)
        self.assertEqual(sum(1 for line in active if line.startswith('server-id')), 1)

    def test_replica(self):
        text = render_server_config(self.cluster, '192.168.1.223', Role.REPLICA)
        active = self._active_lines(text)
        self.assertIn('server-id                     = 1223', active)
        self.assertIn('read_only                     = ON', active)
        self.assertIn('relay_log_recovery            = ON', active)
        self.assertIn('bind-address                  = 127.0.0.1', active)
        self.assertNotIn('binlog_format                 = ROW', active)
        self.assertEqual(sum(1 for line in active if line.startswith('server-id')), 1)

    def test_paths_follow_base_dir(self):
        cluster = Cluster('10.0.0.1', [], base_dir='/data/mysql')
        text = render_server_config(cluster, '10.0.0.1', Role.PRIMARY)
        self.assertIn('datadir                       = /data/mysql/data', text)
        self.assertIn('log_bin                       = /data/mysql/log/binlog', text)
        self.assertTrue(text.endswith('\n'))


class TestSql(unittest.TestCase):

    def test_literal_escapes(self):
        self.assertEqual(_sql.literal("pa'ss"), r"'pa\'ss'")
        self.assertEqual(_sql.literal('a\\b'), r"'a\\b'")

    def test_secret_not_in_repr(self):
        password = "s3cr'et"
        command = Sql(_sql.create_replication_user('repl', password), secrets=[password])
        self.assertNotIn('s3cr', repr(command))
        self.assertIn("IDENTIFIED BY '***'", repr(command))

    def test_start_replication(self):
        sql = _sql.start_replication('192.168.1.221', 'repl', 'pw', '0-1221-4057')
        self.assertTrue(sql.startswith('STOP SLAVE;\n'))
        self.assertIn("SET GLOBAL gtid_slave_pos='0-1221-4057';", sql)
        self.assertIn("MASTER_HOST='192.168.1.221'", sql)
        self.assertIn('MASTER_USE_GTID=slave_pos;', sql)
        self.assertTrue(sql.endswith('START SLAVE;\n'))

    def test_demote(self):
        sql = _sql.demote('192.168.1.223', 'repl', 'pw')
        self.assertTrue(sql.startswith('UNLOCK TABLES;\n'))
        self.assertIn("MASTER_HOST='192.168.1.223'", sql)


class TestDataSteps(unittest.TestCase):

    def test_backup_transfer_and_restore_outlast_default_timeout(self):
        backup_dir = '/var/lib/mysql/backups/backup-2024-05-01_10-00'
        cluster = Cluster('192.168.1.221', ['192.168.1.223'])
        steps = [
            *TakeBackup(backup_dir)._commands,
            CopyBackup(backup_dir, 'root@192.168.1.223', cluster.backup_base_dir),
            *RestoreBackup(cluster, backup_dir)._commands,
            ]
        long_steps = [s for s in steps if any(w in s._command for w in ('mariabackup', 'rsync', 'find', 'chown'))]
        self.assertEqual(len(long_steps), 6)
        for step in long_steps:
            with self.subTest(step=step):
                self.assertEqual(step._timeout, data_timeout)
        self.assertGreater(data_timeout, Run('true')._timeout)


class TestStatus(unittest.TestCase):

    def test_parse_vertical(self):
        status = parse_vertical(_slave_status)
        self.assertEqual(status['Master_Host'], '192.168.1.221')
        self.assertEqual(status['Last_Error'], '')
        self.assertTrue(is_replicating(status))
        self.assertEqual(seconds_behind(status), 0)

    def test_value_with_colon(self):
        status = parse_vertical('  Last_IO_Error: error connecting to master: 1045\n')
        self.assertEqual(status['Last_IO_Error'], 'error connecting to master: 1045')

    def test_not_replicating(self):
        status = parse_vertical(_slave_status.replace('Slave_SQL_Running: Yes', 'Slave_SQL_Running: No'))
        self.assertFalse(is_replicating(status))
        self.assertFalse(is_replicating({}))

    def test_binlog_info(self):
        self.assertEqual(parse_binlog_info('binlog.000003\t328\t0-1221-12\n'), '0-1221-12')
        with self.assertRaises(MalformedBinlogInfo):
            parse_binlog_info('')
        with self.assertRaises(MalformedBinlogInfo):
            parse_binlog_info('binlog.000003 328 garbage')

    def test_gtid_position_must_be_captured(self):
        position = GtidPosition()
        with self.assertRaises(RuntimeError):
            position.get()
        position.set('0-1221-12')
        self.assertEqual(position.get(), '0-1221-12')


class TestWaitForSync(unittest.TestCase):

    def setUp(self):
        self.sleeps = []

    def _reader(self, values):
        statuses = iter(values)
        return lambda: {'Seconds_Behind_Master': next(statuses)}

    def test_catches_up(self):
        read = self._reader(['NULL', '5', '0'])
        wait_for_sync(read, attempts=60, interval_sec=1, sleep=self.sleeps.append)
        self.assertEqual(self.sleeps, [1, 1])

    def test_gives_up(self):
        read = self._reader(['3'] * 5)
        with self.assertRaises(ReplicaDidNotCatchUp):
            wait_for_sync(read, attempts=5, interval_sec=1, sleep=self.sleeps.append)
        self.assertEqual(len(self.sleeps), 4)

    def test_missing_field_is_not_synced(self):
        with self.assertRaises(ReplicaDidNotCatchUp):
            wait_for_sync(lambda: {}, attempts=3, sleep=self.sleeps.append)


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
