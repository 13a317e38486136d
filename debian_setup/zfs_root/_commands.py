# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
from pathlib import Path
from typing import Sequence

from debian_setup._config_files import SetGrubCmdline
from debian_setup._core import Command
from debian_setup._core import CompositeCommand
from debian_setup._core import Run
from debian_setup._core import RunAllowingFailure
from debian_setup._core import Write
from debian_setup._ssh import ssh_input
from debian_setup._sshd import SshdKeyOnly
from debian_setup._templates import render
from debian_setup.zfs_root._disks import BIOS_PARTITION
from debian_setup.zfs_root._disks import BPOOL_PARTITION
from debian_setup.zfs_root._disks import Disk
from debian_setup.zfs_root._disks import EFI_PARTITION
from debian_setup.zfs_root._disks import RPOOL_PARTITION
from debian_setup.zfs_root._disks import partition

BIOS = 'bios'
UEFI = 'uefi'

extra_packages = [
    'apache2-utils', 'aptitude', 'bc', 'curl', 'ethtool', 'fio', 'git', 'ifenslave', 'ifupdown',
    'iperf3', 'ipmitool', 'jq', 'libnuma1', 'libnuma-dev', 'man', 'moreutils', 'nmon', 'ntp',
    'numactl', 'numad', 'numatop', 'openssh-server', 'pciutils', 'redis', 'redis-tools', 'screen',
    'sysbench', 'sysstat', 'tmux', 'wrk',
    ]


def in_chroot(command: str) -> str:
    """Wrap a shell command to run inside the new system.

    >>> print(in_chroot('apt-get install --yes locales'))
    sudo chroot /mnt /usr/bin/env DEBIAN_FRONTEND=noninteractive bash -c 'apt-get install --yes locales'
    """
    return f'sudo chroot /mnt /usr/bin/env DEBIAN_FRONTEND=noninteractive bash -c {shlex.quote(command)}'


class InChroot(Run):

    def __init__(self, command: str, *, timeout: float = 600):
        super().__init__(in_chroot(command), timeout=timeout)


class WipeDisk(CompositeCommand):

    def __init__(self, disk: Disk):
        d = shlex.quote(disk.path)
        super().__init__([
            RunAllowingFailure(f'sudo wipefs -a {d}'),
            RunAllowingFailure(f'sudo blkdiscard -f {d}'),
            RunAllowingFailure(f'sudo sgdisk --zap-all {d}'),
            RunAllowingFailure(f'sudo dd if=/dev/zero of={d} count=100 bs=512'),
            Run(f'sudo sgdisk -Z {d}'),
            ])
        self._repr = f'{WipeDisk.__name__}({disk.path!r})'

    def __repr__(self):
        return self._repr


class PartitionDisk(CompositeCommand):

    def __init__(self, disk: Disk, boot: str):
        d = shlex.quote(disk.path)
        if boot == BIOS:
            boot_partition = f'sudo sgdisk -a1 -n{BIOS_PARTITION}:24K:+1000K -t{BIOS_PARTITION}:EF02 {d}'
        else:
            boot_partition = f'sudo sgdisk -n{EFI_PARTITION}:1M:+512M -t{EFI_PARTITION}:EF00 {d}'
        super().__init__([
            Run(boot_partition),
            Run(f'sudo sgdisk -n{BPOOL_PARTITION}:0:+1G -t{BPOOL_PARTITION}:BF01 {d}'),
            Run(f'sudo sgdisk -n{RPOOL_PARTITION}:0:0 -t{RPOOL_PARTITION}:BF00 {d}'),
            ])
        self._repr = f'{PartitionDisk.__name__}({disk.path!r}, {boot!r})'

    def __repr__(self):
        return self._repr


def create_bpool_command(vdevs: Sequence[str]) -> str:
    return shlex.join([
        'sudo', 'zpool', 'create', '-f',
        '-o', 'ashift=12',
        '-o', 'autotrim=on',
        '-o', 'compatibility=grub2',
        '-o', 'cachefile=/etc/zfs/zpool.cache',
        '-O', 'devices=off',
        '-O', 'acltype=posixacl', '-O', 'xattr=sa',
        '-O', 'compression=lz4',
        '-O', 'normalization=formD',
        '-O', 'relatime=on',
        '-O', 'canmount=off', '-O', 'mountpoint=/boot', '-R', '/mnt',
        'bpool', *vdevs,
        ])


def create_rpool_command(vdevs: Sequence[str], *, encrypted: bool) -> str:
    encryption = ['-O', 'encryption=on', '-O', 'keylocation=prompt', '-O', 'keyformat=passphrase']
    return shlex.join([
        'sudo', 'zpool', 'create', '-f',
        '-o', 'ashift=12',
        '-o', 'autotrim=on',
        *(encryption if encrypted else []),
        '-O', 'acltype=posixacl', '-O', 'xattr=sa', '-O', 'dnodesize=auto',
        '-O', 'compression=lz4',
        '-O', 'normalization=formD',
        '-O', 'relatime=on',
        '-O', 'canmount=off', '-O', 'mountpoint=/', '-R', '/mnt',
        'rpool', *vdevs,
        ])


class CreateEncryptedRootPool(Command):
    """The passphrase is piped to zpool, it is never on the command line."""

    def __init__(self, vdevs: Sequence[str], passphrase: str):
        self._command = create_rpool_command(vdevs, encrypted=True)
        self._passphrase = passphrase

    def __repr__(self):
        return f'{CreateEncryptedRootPool.__name__}({self._command!r})'

    def run(self, host):
        ssh_input(host, self._command, (self._passphrase + '\n').encode('utf8'))


class LoadRootPoolKey(Command):
    """Unlock rpool after it is re-imported. The passphrase goes on stdin."""

    def __init__(self, passphrase: str):
        self._passphrase = passphrase

    def __repr__(self):
        return f'{LoadRootPoolKey.__name__}()'

    def run(self, host):
        ssh_input(host, 'sudo zfs load-key rpool', (self._passphrase + '\n').encode('utf8'))


class ImportPoolsById(CompositeCommand):

    def __init__(self):
        super().__init__([
            Run('sudo zpool export bpool'),
            Run('sudo zpool export rpool'),
            Run('sudo udevadm settle || sleep 1'),
            Run('sudo zpool import -d /dev/disk/by-id -R /mnt bpool'),
            Run('sudo zpool import -d /dev/disk/by-id -R /mnt rpool'),
            ])


class CreateDatasets(CompositeCommand):

    def __init__(self):
        super().__init__([
            Run('sudo zfs create -o canmount=off -o mountpoint=none rpool/ROOT'),
            Run('sudo zfs create -o canmount=off -o mountpoint=none bpool/BOOT'),
            Run('sudo zfs create -o canmount=noauto -o mountpoint=/ rpool/ROOT/debian'),
            Run('sudo zfs mount rpool/ROOT/debian'),
            Run('sudo zfs create -o mountpoint=/boot bpool/BOOT/debian'),
            ])


class Bootstrap(CompositeCommand):

    def __init__(self, suite: str):
        super().__init__([
            Run('sudo mkdir -p /mnt/run'),
            Run('mountpoint -q /mnt/run || sudo mount -t tmpfs tmpfs /mnt/run'),
            Run('sudo mkdir -p /mnt/run/lock'),
            Run(f'sudo debootstrap {shlex.quote(suite)} /mnt', timeout=3600),
            Run('sudo mkdir -p /mnt/etc/zfs'),
            Run('sudo cp /etc/zfs/zpool.cache /mnt/etc/zfs/'),
            ])
        self._repr = f'{Bootstrap.__name__}({suite!r})'

    def __repr__(self):
        return self._repr


class ConfigureBase(CompositeCommand):

    def __init__(self, hostname: str, suite: str):
        super().__init__([
            Write(hostname + '\n', '/mnt/etc/hostname'),
            RunAllowingFailure(
                'sudo cp /etc/network/interfaces /mnt/etc/network/interfaces',
                "/etc/network/interfaces was not copied, configure the network manually later"),
            Write(render_sources(suite), '/mnt/etc/apt/sources.list'),
            Run('sudo mount --make-private --rbind /dev /mnt/dev'),
            Run('sudo mount --make-private --rbind /proc /mnt/proc'),
            Run('sudo mount --make-private --rbind /sys /mnt/sys'),
            ])
        self._repr = f'{ConfigureBase.__name__}({hostname!r}, {suite!r})'

    def __repr__(self):
        return self._repr


def render_sources(suite: str) -> str:
    return render(_sources_template, suite=suite)


def locale_gen_line(locale: str) -> str:
    """Line for /etc/locale.gen.

    >>> locale_gen_line('en_NZ.UTF-8')
    'en_NZ.UTF-8 UTF-8'
    >>> locale_gen_line('C')
    'C C'
    """
    [_language, _dot, charset] = locale.partition('.')
    return f'{locale} {charset or locale}'


class ConfigureLocalization(CompositeCommand):

    def __init__(self, locale: str, timezone: str, keymap: str):
        loc = shlex.quote(locale)
        tz = shlex.quote(timezone)
        super().__init__([
            InChroot('apt-get update'),
            InChroot('apt-get install --yes console-setup locales'),
            Write(locale_gen_line(locale) + '\n', '/mnt/etc/locale.gen'),
            InChroot('locale-gen'),
            Write(f'LANG={locale}\nLC_ALL={locale}\n', '/mnt/etc/default/locale'),
            InChroot(f'update-locale LANG={loc}'),
            Write(timezone + '\n', '/mnt/etc/timezone'),
            InChroot(f'ln -sf /usr/share/zoneinfo/{tz} /etc/localtime'),
            InChroot('dpkg-reconfigure --frontend noninteractive tzdata'),
            Write(f'KEYMAP="{keymap}"\n', '/mnt/etc/vconsole.conf'),
            InChroot('dpkg-reconfigure --frontend noninteractive keyboard-configuration'),
            InChroot('dpkg-reconfigure --frontend noninteractive console-setup'),
            ])
        self._repr = f'{ConfigureLocalization.__name__}({locale!r}, {timezone!r}, {keymap!r})'

    def __repr__(self):
        return self._repr


class InstallKernelAndBootloader(CompositeCommand):

    def __init__(self, boot: str):
        if boot == BIOS:
            grub_packages = 'grub-pc'
        else:
            grub_packages = 'dosfstools grub-efi-amd64 shim-signed'
        super().__init__([
            InChroot('apt-get install --yes dpkg-dev linux-headers-amd64 linux-image-amd64'),
            InChroot('apt-get install --yes zfs-initramfs', timeout=3600),
            Write('REMAKE_INITRD=yes\n', '/mnt/etc/dkms/zfs.conf'),
            InChroot(f'apt-get install --yes {grub_packages}'),
            ])
        self._repr = f'{InstallKernelAndBootloader.__name__}({boot!r})'

    def __repr__(self):
        return self._repr


class SetRootPassword(Command):

    def __init__(self, password: str):
        self._password = password

    def __repr__(self):
        return f'{SetRootPassword.__name__}()'

    def run(self, host):
        ssh_input(host, 'sudo chroot /mnt chpasswd', f'root:{self._password}\n'.encode('utf8'))
        _logger.info("%s: root password set", host)


class EnableBootPoolImport(CompositeCommand):

    def __init__(self):
        super().__init__([
            Run('sudo mkdir -p /mnt/etc/systemd/system/zfs-import.target.wants'),
            Write(_bpool_unit.read_bytes(), '/mnt/etc/systemd/system/zfs-import-bpool.service'),
            InChroot('systemctl enable zfs-import-bpool.service'),
            ])


class InstallExtraPackages(InChroot):

    def __init__(self, packages: Sequence[str]):
        super().__init__('apt-get install --yes ' + shlex.join(packages))


class RootKeyOnlySsh(CompositeCommand):

    def __init__(self, pubkey_line: str):
        super().__init__([
            Run('sudo install -d -m 0700 -o root -g root /mnt/root/.ssh'),
            Write(pubkey_line + '\n', '/mnt/root/.ssh/authorized_keys', mode='u=rw,go='),
            SshdKeyOnly('00-root-keyonly.conf', root='/mnt'),
            InChroot('systemctl enable ssh'),
            ])


class MakeBootable(CompositeCommand):

    def __init__(self, disks: Sequence[Disk], boot: str):
        commands = [
            InChroot('zfs set canmount=on rpool/ROOT/debian'),
            InChroot('zfs mount rpool/ROOT/debian || true'),
            InChroot('zfs set canmount=on bpool/BOOT/debian'),
            InChroot('zfs mount bpool/BOOT/debian || true'),
            InChroot('zfs mount -a'),
            SetGrubCmdline('root=ZFS=rpool/ROOT/debian', path='/mnt/etc/default/grub'),
            RunAllowingFailure(
                in_chroot('grub-probe /boot'),
                "grub-probe /boot failed, ZFS may not be recognized by GRUB"),
            InChroot('update-initramfs -c -k all'),
            InChroot('update-grub'),
            ]
        if boot == BIOS:
            for disk in disks:
                commands.append(InChroot(f'grub-install {shlex.quote(disk.path)}'))
        else:
            commands.append(InChroot('mkdir -p /boot/efi'))
            for disk in disks:
                commands.append(InstallGrubEfi(disk))
        super().__init__(commands)
        self._repr = f'{MakeBootable.__name__}({[d.path for d in disks]!r}, {boot!r})'

    def __repr__(self):
        return self._repr


class InstallGrubEfi(CompositeCommand):
    """Format the disk's ESP, add it to fstab once and install GRUB there."""

    def __init__(self, disk: Disk):
        esp = shlex.quote(partition(disk, EFI_PARTITION))
        super().__init__([
            InChroot('if mountpoint -q /boot/efi; then umount /boot/efi; fi'),
            InChroot(f'mkdosfs -F 32 -s 1 -n EFI {esp}'),
            InChroot(f'mount {esp} /boot/efi'),
            InChroot(
                'grep -q /boot/efi /etc/fstab || '
                f'echo "UUID=$(blkid -s UUID -o value {esp}) /boot/efi vfat defaults 0 0" >> /etc/fstab'),
            InChroot(
                'grub-install --target=x86_64-efi --efi-directory=/boot/efi '
                f'--bootloader-id=debian --recheck {shlex.quote(disk.path)}'),
            InChroot('umount /boot/efi'),
            ])
        self._repr = f'{InstallGrubEfi.__name__}({disk.path!r})'

    def __repr__(self):
        return self._repr


class ConfigureMountOrder(CompositeCommand):

    def __init__(self):
        super().__init__([
            InChroot('mkdir -p /etc/zfs/zfs-list.cache'),
            InChroot('zfs set cachefile=/etc/zfs/zpool.cache bpool'),
            InChroot('zfs set cachefile=/etc/zfs/zpool.cache rpool'),
            InChroot('zpool set cachefile=/etc/zfs/zpool.cache bpool'),
            InChroot('zpool set cachefile=/etc/zfs/zpool.cache rpool'),
            InChroot('zfs list -t filesystem -o name,mountpoint,canmount > /dev/null'),
            InChroot(
                'if [ -n "$(find /etc/zfs/zfs-list.cache -type f)" ]; '
                'then sed -Ei "s|/mnt/?|/|" /etc/zfs/zfs-list.cache/*; fi'),
            InChroot('zfs set canmount=noauto rpool/ROOT/debian'),
            InChroot('zfs set canmount=noauto bpool/BOOT'),
            ])


class Cleanup(CompositeCommand):

    def __init__(self):
        super().__init__([
            RunAllowingFailure('sudo umount -R /mnt'),
            RunAllowingFailure('sudo zfs umount -a'),
            Run('sudo zpool export -a'),
            ])


_sources_template = Path(__file__).with_name('sources.list.j2')
_bpool_unit = Path(__file__).with_name('zfs-import-bpool.service')
_logger = logging.getLogger(__name__)
