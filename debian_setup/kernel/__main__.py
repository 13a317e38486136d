# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import Fleet
from debian_setup._logging import init_logging
from debian_setup.kernel._commands import ApplyPatches
from debian_setup.kernel._commands import BuildKernel
from debian_setup.kernel._commands import BuildVariant
from debian_setup.kernel._commands import CleanTree
from debian_setup.kernel._commands import ConfigureKernel
from debian_setup.kernel._commands import FetchKernel
from debian_setup.kernel._commands import InstallBuildDependencies
from debian_setup.kernel._commands import InstallKernel
from debian_setup.kernel._commands import InstallZfsDkms
from debian_setup.kernel._commands import PackageZfs
from debian_setup.kernel._commands import Verify
from debian_setup.kernel._fragment import clean_fragment
from debian_setup.kernel._fragment import hardened_fragment
from debian_setup.kernel._settings import Settings
from debian_setup.kernel._settings import plan_text
from debian_setup.kernel._versions import resolve_kernel_series
from debian_setup.kernel._versions import resolve_zfs_version


def commands_for(parsed_args, settings: Settings) -> List[Command]:
    subcommand = parsed_args.subcommand
    if subcommand == 'fetch':
        series = resolve_kernel_series(settings.kernel_series)
        return [InstallBuildDependencies(), FetchKernel(settings, series)]
    if subcommand == 'config':
        fragment = clean_fragment(Path(parsed_args.fragment).read_text())
        return [ConfigureKernel(settings, fragment)]
    if subcommand == 'build':
        return [BuildKernel(settings)]
    if subcommand == 'install':
        return [InstallKernel(settings)]
    if subcommand == 'verify':
        return [Verify()]
    if subcommand == 'zfs-dkms':
        return [InstallZfsDkms()]
    if subcommand == 'package-zfs':
        return [PackageZfs(settings, resolve_zfs_version(settings.zfs_version))]
    if subcommand == 'variant':
        return [BuildVariant(settings)]
    if subcommand == 'patch-apply':
        return [ApplyPatches(settings, parsed_args.commits)]
    if subcommand == 'clean':
        return [CleanTree(settings)]
    raise ValueError(f"Unknown subcommand {subcommand!r}")


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.kernel',
        description=(
            "Hardened kernel builder. "
            "Environment: KERNEL_SERIES WORKDIR LOCALVER BUILDJOBS "
            "ZFS_VERSION ZFS_SRC ZFS_WORKDIR EXTRA_KCFLAGS"),
        )
    parser.add_argument('--host', default='root@localhost', help="build host (default: %(default)s)")
    subparsers = parser.add_subparsers(dest='subcommand', required=True)
    subparsers.add_parser('plan', help="show locked scope and resolved LTS/ZFS versions")
    subparsers.add_parser('fetch', help="clone or sync linux-stable into WORKDIR")
    config_parser = subparsers.add_parser('config', help="pristine .config, snapshots and listnewconfig")
    config_parser.add_argument('--fragment', default=str(hardened_fragment), help="Kconfig fragment to merge")
    subparsers.add_parser('build', help="build Debian packages (amd64, Clang+LLD, ThinLTO)")
    subparsers.add_parser('install', help="install image and headers, update GRUB")
    subparsers.add_parser('verify', help="smoke-test the running kernel, drivers and hardening")
    subparsers.add_parser('zfs-dkms', help="install OpenZFS via DKMS")
    subparsers.add_parser('package-zfs', help="build a prebuilt OpenZFS modules .deb")
    subparsers.add_parser('variant', help="build the IOMMU passthrough variant (suffix -pt)")
    patch_parser = subparsers.add_parser('patch-apply', help="cherry-pick commits, then build (-p<sha>)")
    patch_parser.add_argument('commits', metavar='SHA', nargs='+')
    subparsers.add_parser('clean', help="remove the kernel tree, keep installed kernels")
    parsed_args = parser.parse_args(args)
    settings = Settings(os.environ)
    if parsed_args.subcommand == 'plan':
        series = resolve_kernel_series(settings.kernel_series)
        zfs_version = resolve_zfs_version(settings.zfs_version)
        print(plan_text(settings, series, zfs_version), end='', flush=True)
        return 0
    if settings.extra_kcflags and parsed_args.subcommand in ('build', 'variant', 'patch-apply'):
        _logger.info("Using EXTRA_KCFLAGS=%r", settings.extra_kcflags)
    Fleet([parsed_args.host]).run(commands_for(parsed_args, settings))
    _logger.info("%s: %s complete", parsed_args.host, parsed_args.subcommand)
    return 0


_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('kernel')
    exit(main(sys.argv[1:]))
