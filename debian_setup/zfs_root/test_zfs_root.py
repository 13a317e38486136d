# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import unittest

from debian_setup.zfs_root.__main__ import Installation
from debian_setup.zfs_root._commands import BIOS
from debian_setup.zfs_root._commands import UEFI
from debian_setup.zfs_root._commands import CreateEncryptedRootPool
from debian_setup.zfs_root._commands import LoadRootPoolKey
from debian_setup.zfs_root._commands import create_bpool_command
from debian_setup.zfs_root._commands import create_rpool_command
from debian_setup.zfs_root._commands import render_sources
from debian_setup.zfs_root._disks import Disk
from debian_setup.zfs_root._disks import parse_lsblk
from debian_setup.zfs_root._disks import partition
from debian_setup.zfs_root._disks import vdev_layout

_lsblk = '''\
loop0     2.4G loop
sda     931.5G disk WDC WD10EZEX-08W
sdb     931.5G disk WDC WD10EZEX-08W
sr0      1024M rom  QEMU DVD-ROM
nvme0n1   1.8T disk Samsung SSD 980 PRO 2TB
'''


class TestDisks(unittest.TestCase):

    def test_lsblk(self):
        disks = parse_lsblk(_lsblk)
        self.assertEqual([d.name for d in disks], ['sda', 'sdb', 'nvme0n1'])
        self.assertEqual(disks[2].model, 'Samsung SSD 980 PRO 2TB')
        self.assertEqual(str(disks[0]), 'sda 931.5G WDC WD10EZEX-08W')

    def test_partition_names(self):
        self.assertEqual(partition(Disk('vda'), 2), '/dev/vda2')
        self.assertEqual(partition(Disk('nvme1n1'), 4), '/dev/nvme1n1p4')

    def test_mirror(self):
        disks = [Disk('sda'), Disk('nvme0n1')]
        self.assertEqual(vdev_layout(disks, 4, 'mirror'), ['mirror', '/dev/sda4', '/dev/nvme0n1p4'])

    def test_raid10_odd(self):
        disks = [Disk('sda'), Disk('sdb'), Disk('sdc')]
        self.assertEqual(
            vdev_layout(disks, 3, 'raid10'),
            ['mirror', '/dev/sda3', '/dev/sdb3', '/dev/sdc3'])

    def test_single_disk_ignores_layout(self):
        self.assertEqual(vdev_layout([Disk('sda')], 3, 'raidz3'), ['/dev/sda3'])


class TestPools(unittest.TestCase):

    def test_bpool(self):
        command = create_bpool_command(['mirror', '/dev/sda3', '/dev/sdb3'])
        self.assertIn('-o compatibility=grub2', command)
        self.assertIn('-O mountpoint=/boot -R /mnt', command)
        self.assertTrue(command.endswith('bpool mirror /dev/sda3 /dev/sdb3'))

    def test_rpool(self):
        plain = create_rpool_command(['/dev/sda4'], encrypted=False)
        encrypted = create_rpool_command(['/dev/sda4'], encrypted=True)
        self.assertNotIn('encryption', plain)
        self.assertIn('-O encryption=on -O keylocation=prompt -O keyformat=passphrase', encrypted)
        self.assertIn('-O dnodesize=auto', plain)

    def test_passphrase_not_in_repr(self):
        command = CreateEncryptedRootPool(['/dev/sda4'], 'correct horse battery')
        self.assertNotIn('horse', repr(command))


class TestInstallation(unittest.TestCase):

    def _installation(self, boot, passphrase=None):
        return Installation(
            [Disk('sda'), Disk('nvme0n1')],
            boot=boot,
            layout='mirror',
            hostname='srv-test',
            suite='bookworm',
            locale='en_NZ.UTF-8',
            timezone='Pacific/Auckland',
            keymap='us',
            root_pubkey='ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAILbdhaM9azHyEkGnXwnygYGJ2pGWHCroL82xv48AOhsN',
            root_password='hunter2',
            passphrase=passphrase,
            )

    def test_order(self):
        descriptions = [repr(c) for c in self._installation(UEFI).commands()]
        self.assertEqual(descriptions[:4], [
            "WipeDisk('/dev/sda')",
            "WipeDisk('/dev/nvme0n1')",
            "PartitionDisk('/dev/sda', 'uefi')",
            "PartitionDisk('/dev/nvme0n1', 'uefi')",
            ])
        self.assertIn("MakeBootable(['/dev/sda', '/dev/nvme0n1'], 'uefi')", descriptions)
        self.assertEqual(descriptions[-1], '<Cleanup with 3 commands>')

    def test_encrypted_rpool_unlocked_before_datasets(self):
        commands = self._installation(UEFI, passphrase='pool-secret').commands()
        descriptions = [repr(c) for c in commands]
        imported = descriptions.index('<ImportPoolsById with 5 commands>')
        self.assertEqual(descriptions[imported + 1], 'LoadRootPoolKey()')
        self.assertEqual(descriptions[imported + 2], '<CreateDatasets with 5 commands>')
        [load_key] = [c for c in commands if isinstance(c, LoadRootPoolKey)]
        self.assertEqual(load_key._passphrase, 'pool-secret')

    def test_plain_rpool_needs_no_key(self):
        descriptions = [repr(c) for c in self._installation(BIOS).commands()]
        self.assertNotIn('LoadRootPoolKey()', descriptions)
        imported = descriptions.index('<ImportPoolsById with 5 commands>')
        self.assertEqual(descriptions[imported + 1], '<CreateDatasets with 5 commands>')

    def test_secrets_not_in_descriptions(self):
        text = '\n'.join(repr(c) for c in self._installation(BIOS, passphrase='pool-secret').commands())
        self.assertNotIn('hunter2', text)
        self.assertNotIn('pool-secret', text)
        self.assertIn('CreateEncryptedRootPool', text)

    def test_sources(self):
        text = render_sources('trixie')
        self.assertIn('deb http://deb.debian.org/debian-security trixie-security main contrib non-free-firmware', text)
        self.assertEqual(text.count('deb-src'), 3)


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
