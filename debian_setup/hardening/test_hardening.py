# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from debian_setup._pubkey import PubKey
from debian_setup.hardening.__main__ import ssh_hardening_commands
from debian_setup.hardening.__main__ import tuning_commands
from debian_setup.hardening._commands import uninstall_commands
from debian_setup.hardening._profiles import profiles
from debian_setup.hardening._profiles import render_sysctl
from debian_setup.hardening._tuning import GiB
from debian_setup.hardening._tuning import arc_limits
from debian_setup.hardening._tuning import parse_mem_total
from debian_setup.hardening._tuning import parse_ring_params
from debian_setup.hardening._tuning import ring_arguments

_ethtool_g = '''\
Ring parameters for enp3s0f0:
Pre-set maximums:
RX:\t\t4096
RX Mini:\tn/a
RX Jumbo:\tn/a
TX:\t\t4096
TX push buff len:\tn/a
Current hardware settings:
RX:\t\t512
RX Mini:\tn/a
RX Jumbo:\tn/a
TX:\t\t512
RX Buf Len:\tn/a
'''


class TestProfiles(unittest.TestCase):

    def test_names(self):
        self.assertEqual(list(profiles), ['auto', 'lan_low_latency', 'wan_throughput', 'datacenter_10g'])

    def test_lan_low_latency(self):
        profile = profiles['lan_low_latency']
        self.assertEqual((profile.tcp_cc, profile.qdisc), ('cubic', 'fq_codel'))
        self.assertFalse(profile.needs_bbr())
        self.assertEqual(profile.settings['net.ipv4.tcp_rmem'], '4096 87380 6291456')

    def test_datacenter_sysctl(self):
        text = render_sysctl(profiles['datacenter_10g'])
        lines = text.splitlines()
        self.assertTrue(lines[0].startswith('# Managed by debian_setup'))
        self.assertIn('net.core.rmem_max = 33554432', lines)
        self.assertIn('net.ipv4.tcp_fastopen = 3', lines)
        self.assertIn('net.ipv4.tcp_congestion_control = bbr', lines)
        self.assertIn('net.core.default_qdisc = fq', lines)
        self.assertIn('vm.swappiness = 10', lines)
        self.assertNotIn('', lines)


class TestMemory(unittest.TestCase):

    def test_mem_total(self):
        self.assertEqual(parse_mem_total('MemFree: 1 kB\nMemTotal: 1048576 kB\n'), GiB)
        with self.assertRaises(ValueError):
            parse_mem_total('MemFree: 1 kB\n')

    def test_dynamic_arc(self):
        [arc_max, arc_min] = arc_limits(128 * GiB, dynamic=True)
        self.assertEqual(arc_max, 64 * GiB)
        self.assertEqual(arc_min, 16 * GiB)

    def test_small_machine_floor(self):
        [arc_max, arc_min] = arc_limits(2 * GiB, dynamic=True)
        self.assertEqual(arc_max, 1 * GiB)
        self.assertEqual(arc_min, 1 * GiB)

    def test_min_never_above_max(self):
        [arc_max, arc_min] = arc_limits(1 * GiB, dynamic=True)
        self.assertLessEqual(arc_min, arc_max)

    def test_static_arc(self):
        self.assertEqual(arc_limits(512 * GiB, dynamic=False), (8 * GiB, 1 * GiB))


class TestRings(unittest.TestCase):

    def test_parse(self):
        [maxima, current] = parse_ring_params(_ethtool_g)
        self.assertEqual(maxima, {'RX': 4096, 'TX': 4096})
        self.assertEqual(current, {'RX': 512, 'TX': 512})
        self.assertEqual(ring_arguments(maxima, current), ['rx', '4096', 'tx', '4096'])

    def test_already_at_maximum(self):
        [maxima, _] = parse_ring_params(_ethtool_g)
        self.assertEqual(ring_arguments(maxima, maxima), [])

    def test_unsupported(self):
        self.assertEqual(parse_ring_params('netlink error: Operation not supported\n'), ({}, {}))


class TestCommands(unittest.TestCase):

    def test_tuning_order(self):
        commands = tuning_commands(profiles['auto'], hugepages=False, turbo=True, dynamic_arc=True)
        self.assertEqual([repr(c) for c in commands], [
            repr(commands[0]),
            "ApplySysctl('auto')",
            'ApplyArcLimits(dynamic=True)',
            "TuneNics('fq')",
            'TuneIoAndCpu(hugepages=False, turbo=True)',
            repr(commands[5]),
            ])

    def test_key_goes_before_sshd_lockdown(self):
        key = PubKey('ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAILbdhaM9azHyEkGnXwnygYGJ2pGWHCroL82xv48AOhsN bob@desk')
        commands = ssh_hardening_commands('bob', key)
        self.assertTrue(repr(commands[0]).startswith("AddPubKey('bob'"))
        self.assertIn('/etc/ssh/sshd_config.d/99-perf-tune-hardening.conf', repr(commands[1]))

    def test_uninstall_removes_only_managed_files(self):
        descriptions = '\n'.join(repr(c) for c in uninstall_commands())
        self.assertIn('/etc/sysctl.d/99-perf-tune.conf', descriptions)
        self.assertIn('/etc/modprobe.d/zfs.conf', descriptions)
        self.assertIn("grep -qsF -- 'Managed by debian_setup'", descriptions)
        self.assertIn('ipv6', descriptions)


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
