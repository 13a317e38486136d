# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from debian_setup.mariadb.__main__ import SwitchoverNotSupported
from debian_setup.mariadb.__main__ import perform
from debian_setup.mariadb.__main__ import re_auth
from debian_setup.mariadb.__main__ import seed_replica
from debian_setup.mariadb.__main__ import setup_node
from debian_setup.mariadb.__main__ import switchover
from debian_setup.mariadb._cluster import Cluster
from debian_setup.mariadb._commands import Sql
from debian_setup.mariadb._commands import WaitForReplicaSync
from debian_setup.mariadb._commands import fence_timeout
from debian_setup.mariadb._status import ReplicaDidNotCatchUp


class _ScriptedOperator:

    def __init__(self, answers=(), *, secret='n3w-s3cret', agree=True):
        self._answers = list(answers)
        self._secret = secret
        self._agree = agree
        self.prompts = []

    def ask(self, prompt):
        self.prompts.append(prompt)
        return self._answers.pop(0)

    def ask_secret(self, prompt):
        self.prompts.append(prompt)
        return self._secret

    def choose(self, prompt, options):
        self.prompts.append(prompt)
        return options[-1]

    def confirm(self, prompt):
        self.prompts.append(prompt)
        return self._agree


class _RecordedRun:
    """Record what would run on which hosts. Optionally fail on a command type."""

    def __init__(self, failing_type=None, error=None):
        self.calls = []
        self.commands = []
        self._failing_type = failing_type
        self._error = error

    def __call__(self, hosts, commands):
        self.calls.append((list(hosts), [type(c).__name__ for c in commands]))
        self.commands.extend(commands)
        for command in commands:
            if self._failing_type is not None and isinstance(command, self._failing_type):
                raise self._error


class TestSetupNode(unittest.TestCase):

    def test_replica(self):
        run = _RecordedRun()
        operator = _ScriptedOperator(['192.168.1.223', ' replica '])
        setup_node(Cluster('192.168.1.221', ['192.168.1.223']), operator, run)
        self.assertEqual(run.calls, [(['root@192.168.1.223'], ['ConfigureNode'])])
        self.assertEqual(repr(run.commands[0]), "ConfigureNode('192.168.1.223', 'Replica')")


class TestSeedReplica(unittest.TestCase):

    def setUp(self):
        self.cluster = Cluster('192.168.1.221', ['192.168.1.223', '192.168.1.224'])

    def test_order(self):
        run = _RecordedRun()
        seed_replica(self.cluster, _ScriptedOperator(), run)
        self.assertEqual(run.calls, [
            (['root@192.168.1.221'], ['Sql', 'TakeBackup', 'CaptureGtid', 'AddOtherToOurKnownHosts', 'CopyBackup']),
            (['root@192.168.1.224'], ['RestoreBackup', 'StartReplication', 'ShowReplicationStatus']),
            ])
        copy = run.commands[4]
        self.assertIn(' root@192.168.1.224:/var/lib/mysql/backups/', repr(copy))

    def test_password_not_in_descriptions(self):
        run = _RecordedRun()
        seed_replica(self.cluster, _ScriptedOperator(secret='hunter2'), run)
        self.assertNotIn('hunter2', '\n'.join(repr(c) for c in run.commands))

    def test_declined(self):
        run = _RecordedRun()
        result = perform('seed-replica', self.cluster, _ScriptedOperator(agree=False), run)
        self.assertEqual(result, 0)
        self.assertEqual(run.calls, [])


class TestReAuth(unittest.TestCase):

    def test_primary_then_all_replicas(self):
        run = _RecordedRun()
        cluster = Cluster('192.168.1.221', ['192.168.1.223', '192.168.1.224'], ssh_user='admin')
        re_auth(cluster, _ScriptedOperator(secret='hunter2'), run)
        self.assertEqual(run.calls, [
            (['admin@192.168.1.221'], ['Sql']),
            (['admin@192.168.1.223', 'admin@192.168.1.224'], ['Sql']),
            ])
        [on_primary, on_replicas] = [repr(c) for c in run.commands]
        self.assertIn('CREATE OR REPLACE USER', on_primary)
        self.assertIn('CHANGE MASTER TO MASTER_PASSWORD=', on_replicas)
        self.assertNotIn('hunter2', on_primary + on_replicas)

    def test_no_replicas(self):
        run = _RecordedRun()
        re_auth(Cluster('192.168.1.221', []), _ScriptedOperator(), run)
        self.assertEqual(run.calls, [(['root@192.168.1.221'], ['Sql'])])


class TestSwitchover(unittest.TestCase):

    def setUp(self):
        self.cluster = Cluster('192.168.1.221', ['192.168.1.223'])

    def test_replica_count_must_be_one(self):
        for replicas in [], ['192.168.1.223', '192.168.1.224']:
            with self.subTest(replicas=replicas):
                run = _RecordedRun()
                operator = _ScriptedOperator()
                with self.assertRaises(SwitchoverNotSupported):
                    switchover(Cluster('192.168.1.221', replicas), operator, run)
                self.assertEqual(operator.prompts, [])
                self.assertEqual(run.calls, [])

    def test_roles_swapped(self):
        run = _RecordedRun()
        switchover(self.cluster, _ScriptedOperator(), run)
        self.assertEqual(run.calls, [
            (['root@192.168.1.223'], ['WaitForReplicaSync']),
            (['root@192.168.1.221'], ['Sql']),
            (['root@192.168.1.223'], ['Sql']),
            (['root@192.168.1.221'], ['Sql', 'ShowReplicationStatus']),
            ])
        [_, fence, promote, demote, _] = run.commands
        self.assertIn('FLUSH TABLES WITH READ LOCK', repr(fence))
        self.assertIn('RESET MASTER', repr(promote))
        self.assertIn("MASTER_HOST='192.168.1.223'", repr(demote))

    def test_fence_may_wait_for_long_queries(self):
        run = _RecordedRun()
        switchover(self.cluster, _ScriptedOperator(), run)
        fence = run.commands[1]
        self.assertIsInstance(fence, Sql)
        self.assertEqual(fence._timeout, fence_timeout)
        self.assertGreater(fence_timeout, Sql('SELECT 1;')._timeout)

    def test_lagging_replica_changes_nothing(self):
        run = _RecordedRun(WaitForReplicaSync, ReplicaDidNotCatchUp("last lag: 12"))
        with self.assertRaises(ReplicaDidNotCatchUp):
            switchover(self.cluster, _ScriptedOperator(), run)
        self.assertEqual(run.calls, [(['root@192.168.1.223'], ['WaitForReplicaSync'])])

    def test_declined(self):
        run = _RecordedRun()
        result = perform('switchover', self.cluster, _ScriptedOperator(agree=False), run)
        self.assertEqual(result, 0)
        self.assertEqual(run.calls, [])


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
