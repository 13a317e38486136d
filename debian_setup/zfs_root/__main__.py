# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import getpass
import logging
import sys
from typing import List
from typing import Optional
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import Fleet
from debian_setup._core import Run
from debian_setup._logging import init_logging
from debian_setup._prompts import ask
from debian_setup._prompts import ask_secret
from debian_setup._prompts import choose
from debian_setup._prompts import choose_many
from debian_setup._prompts import confirm
from debian_setup._pubkey import PubKey
from debian_setup._ssh import ssh
from debian_setup.config import global_config
from debian_setup.zfs_root._commands import BIOS
from debian_setup.zfs_root._commands import UEFI
from debian_setup.zfs_root._commands import Bootstrap
from debian_setup.zfs_root._commands import Cleanup
from debian_setup.zfs_root._commands import ConfigureBase
from debian_setup.zfs_root._commands import ConfigureLocalization
from debian_setup.zfs_root._commands import ConfigureMountOrder
from debian_setup.zfs_root._commands import CreateDatasets
from debian_setup.zfs_root._commands import CreateEncryptedRootPool
from debian_setup.zfs_root._commands import EnableBootPoolImport
from debian_setup.zfs_root._commands import ImportPoolsById
from debian_setup.zfs_root._commands import InstallExtraPackages
from debian_setup.zfs_root._commands import InstallKernelAndBootloader
from debian_setup.zfs_root._commands import LoadRootPoolKey
from debian_setup.zfs_root._commands import MakeBootable
from debian_setup.zfs_root._commands import PartitionDisk
from debian_setup.zfs_root._commands import RootKeyOnlySsh
from debian_setup.zfs_root._commands import SetRootPassword
from debian_setup.zfs_root._commands import WipeDisk
from debian_setup.zfs_root._commands import create_bpool_command
from debian_setup.zfs_root._commands import create_rpool_command
from debian_setup.zfs_root._commands import extra_packages
from debian_setup.zfs_root._disks import BPOOL_PARTITION
from debian_setup.zfs_root._disks import RPOOL_PARTITION
from debian_setup.zfs_root._disks import Disk
from debian_setup.zfs_root._disks import NoDisksFound
from debian_setup.zfs_root._disks import layout_from_answer
from debian_setup.zfs_root._disks import layouts
from debian_setup.zfs_root._disks import parse_fallback_names
from debian_setup.zfs_root._disks import parse_lsblk
from debian_setup.zfs_root._disks import vdev_layout


class Installation:

    def __init__(
            self,
            disks: Sequence[Disk],
            *,
            boot: str,
            layout: str,
            hostname: str,
            suite: str,
            locale: str,
            timezone: str,
            keymap: str,
            root_pubkey: str,
            root_password: str,
            passphrase: Optional[str] = None,
            ):
        self.disks = list(disks)
        self.boot = boot
        self.layout = layout
        self.hostname = hostname
        self.suite = suite
        self.locale = locale
        self.timezone = timezone
        self.keymap = keymap
        self.root_pubkey = root_pubkey
        self.root_password = root_password
        self.passphrase = passphrase

    def commands(self) -> List[Command]:
        bpool_vdevs = vdev_layout(self.disks, BPOOL_PARTITION, self.layout)
        rpool_vdevs = vdev_layout(self.disks, RPOOL_PARTITION, self.layout)
        if self.passphrase is None:
            create_rpool = Run(create_rpool_command(rpool_vdevs, encrypted=False))
            unlock_rpool = []
        else:
            create_rpool = CreateEncryptedRootPool(rpool_vdevs, self.passphrase)
            unlock_rpool = [LoadRootPoolKey(self.passphrase)]
        return [
            *[WipeDisk(disk) for disk in self.disks],
            *[PartitionDisk(disk, self.boot) for disk in self.disks],
            Run(create_bpool_command(bpool_vdevs)),
            create_rpool,
            ImportPoolsById(),
            *unlock_rpool,
            CreateDatasets(),
            Bootstrap(self.suite),
            ConfigureBase(self.hostname, self.suite),
            ConfigureLocalization(self.locale, self.timezone, self.keymap),
            InstallKernelAndBootloader(self.boot),
            SetRootPassword(self.root_password),
            EnableBootPoolImport(),
            InstallExtraPackages(extra_packages),
            RootKeyOnlySsh(self.root_pubkey),
            MakeBootable(self.disks, self.boot),
            ConfigureMountOrder(),
            Cleanup(),
            ]


def discover_disks(host: str) -> List[Disk]:
    disks = parse_lsblk(ssh(host, 'lsblk -ndo NAME,SIZE,TYPE,MODEL').stdout.decode())
    if not disks:
        _logger.info("Attempting alternative disk detection")
        disks = parse_fallback_names(ssh(host, 'lsblk -ndo NAME').stdout.decode())
    if not disks:
        raise NoDisksFound(f"{host}: no physical hard drives found")
    return disks


def _ask_new_secret(prompt: str, *, min_length: int = 1) -> str:
    while True:
        secret = ask_secret(prompt)
        if len(secret) < min_length:
            print(f"Must be at least {min_length} characters.", flush=True)
            continue
        if getpass.getpass("Repeat: ") == secret:
            return secret
        print("Do not match, try again.", flush=True)


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.zfs_root',
        description="Install Debian with root on ZFS. All data on the selected disks is erased.",
        )
    parser.add_argument('host', metavar='HOST', help="live system, e.g. root@192.168.1.50")
    parser.add_argument('--hostname', default=global_config.get('install_hostname', 'debian'))
    parsed_args = parser.parse_args(args)
    host = parsed_args.host
    disks = choose_many("Enter the numbers of the disks to use", discover_disks(host))
    _logger.info("Selected disks: %s", ', '.join(d.path for d in disks))
    _logger.warning("Subsequent operations on the selected disks are destructive and erase all data")
    if not confirm("Are you sure you want to proceed?"):
        _logger.info("Operation canceled. No disks have been modified.")
        return 0
    boot_choice = choose("Choose booting type", ["BIOS (Legacy)", "UEFI"])
    boot = BIOS if boot_choice.startswith("BIOS") else UEFI
    encrypted = confirm("Encrypt the main pool (rpool)?")
    if len(disks) > 1:
        for number, layout in enumerate(layouts, 1):
            print(f"{number}) {layout}")
        layout = layout_from_answer(ask("Pool layout [1-5]"))
    else:
        layout = 'mirror'
    passphrase = _ask_new_secret("rpool passphrase", min_length=8) if encrypted else None
    root_password = _ask_new_secret("Root password of the new system")
    root_pubkey = PubKey(global_config['install_root_pubkey']).line
    installation = Installation(
        disks,
        boot=boot,
        layout=layout,
        hostname=parsed_args.hostname,
        suite=global_config.get('install_suite', 'bookworm'),
        locale=global_config.get('install_locale', 'en_US.UTF-8'),
        timezone=global_config.get('install_timezone', 'Etc/UTC'),
        keymap=global_config.get('install_keymap', 'us'),
        root_pubkey=root_pubkey,
        root_password=root_password,
        passphrase=passphrase,
        )
    Fleet([host]).run(installation.commands())
    _logger.info("Installation complete. Remove the live medium and reboot.")
    return 0


_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('zfs_root')
    exit(main(sys.argv[1:]))
