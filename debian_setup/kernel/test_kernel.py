# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import unittest

import requests

from debian_setup.kernel.__main__ import commands_for
from debian_setup.kernel._commands import ApplyPatches
from debian_setup.kernel._commands import as_root_in
from debian_setup.kernel._commands import build_command
from debian_setup.kernel._commands import disabled_symbols
from debian_setup.kernel._commands import enabled_symbols
from debian_setup.kernel._commands import render_zfs_control
from debian_setup.kernel._fragment import hardened_fragment
from debian_setup.kernel._fragment import parse_fragment
from debian_setup.kernel._fragment import render_fragment
from debian_setup.kernel._settings import Settings
from debian_setup.kernel._settings import plan_text
from debian_setup.kernel._versions import fallback_series
from debian_setup.kernel._versions import fallback_zfs_version
from debian_setup.kernel._versions import resolve_kernel_series
from debian_setup.kernel._versions import resolve_zfs_version


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        settings = Settings({})
        self.assertEqual(settings.workdir, '/root/kernel-build')
        self.assertEqual(settings.tree, '/root/kernel-build/linux')
        self.assertEqual(settings.zfs_workdir, '/root/zfs-build')
        self.assertEqual(settings.localver, '-r720srv')
        self.assertEqual(settings.zfs_src, 'https://github.com/openzfs/zfs')
        self.assertEqual(settings.extra_kcflags, '')

    def test_invalid_jobs(self):
        with self.assertRaisesRegex(ValueError, 'BUILDJOBS'):
            Settings({'BUILDJOBS': 'many'})
        with self.assertRaisesRegex(ValueError, 'BUILDJOBS'):
            Settings({'BUILDJOBS': '0'})

    def test_plan(self):
        text = plan_text(Settings({'BUILDJOBS': '24'}), '6.6', '2.2.6')
        self.assertIn('Kernel series (LTS): v6.6\n', text)
        self.assertIn('OpenZFS version:     2.2.6\n', text)
        self.assertIn('Jobs:                24\n', text)
        self.assertIn("EXTRA_KCFLAGS:       ''\n", text)
        self.assertIn('Scope (locked):', text)


class TestVersions(unittest.TestCase):

    def test_explicit_settings_skip_network(self):
        def fetch(url):
            raise AssertionError(f"Must not fetch {url}")
        self.assertEqual(resolve_kernel_series('6.1', fetch), '6.1')
        self.assertEqual(resolve_zfs_version('2.2.2', fetch), '2.2.2')

    def test_auto(self):
        releases = {'releases': [
            {'moniker': 'mainline', 'version': '6.12-rc3'},
            {'moniker': 'longterm', 'version': '6.6.56'},
            ]}
        tags = [{'name': 'zfs-2.2.9'}, {'name': 'zfs-2.2.10'}, {'name': 'zfs-2.1.16'}]
        self.assertEqual(resolve_kernel_series('auto', lambda url: releases), '6.6')
        self.assertEqual(resolve_zfs_version('auto', lambda url: tags), '2.2.10')

    def test_network_error_falls_back(self):
        def fetch(url):
            raise requests.ConnectionError(url)
        self.assertEqual(resolve_kernel_series('auto', fetch), fallback_series)
        self.assertEqual(resolve_zfs_version('auto', fetch), fallback_zfs_version)

    def test_unexpected_format_falls_back(self):
        self.assertEqual(resolve_kernel_series('auto', lambda url: {'releases': []}), fallback_series)
        self.assertEqual(resolve_kernel_series('auto', lambda url: []), fallback_series)
        self.assertEqual(resolve_zfs_version('auto', lambda url: [{'name': 'zfs-2.3.0'}]), fallback_zfs_version)


class TestFragment(unittest.TestCase):

    def test_packaged_fragment(self):
        symbols = parse_fragment(hardened_fragment.read_text())
        self.assertEqual(symbols['RANDOMIZE_KSTACK_OFFSET_DEFAULT'], 'n')
        self.assertEqual(symbols['LTO_CLANG_THIN'], 'y')
        self.assertEqual(symbols['TG3'], 'm')
        self.assertEqual(symbols['IOMMU_DEFAULT_DMA_STRICT'], 'y')
        self.assertEqual(symbols['AUDIT'], 'n')

    def test_duplicates_and_bogus_lines(self):
        text = '\n'.join([
            '# CONFIG_RANDOMIZE_KSTACK_OFFSET_DEFAULT is not set',
            'CONFIG_RANDOMIZE_KSTACK_OFFSET_DEFAULT is not set',
            'CONFIG_RANDOMIZE_KSTACK_OFFSET_DEFAULT=n',
            'CONFIG_RANDOMIZE_KSTACK_OFFSET_DEFAULT=n',
            'CONFIG_HZ_250=y',
            ])
        with self.assertLogs('debian_setup.kernel._fragment', logging.WARNING) as logs:
            symbols = parse_fragment(text)
        self.assertEqual(len(logs.records), 1)
        self.assertEqual(symbols, {'RANDOMIZE_KSTACK_OFFSET_DEFAULT': 'n', 'HZ_250': 'y'})
        self.assertEqual(
            render_fragment(symbols),
            '# CONFIG_RANDOMIZE_KSTACK_OFFSET_DEFAULT is not set\nCONFIG_HZ_250=y\n')

    def test_pins_do_not_conflict(self):
        self.assertFalse(set(enabled_symbols) & set(disabled_symbols))


class TestCommands(unittest.TestCase):

    def test_build_in_tree(self):
        command = as_root_in('/root/kernel-build/linux', build_command(Settings({}), '-r720srv'))
        self.assertTrue(command.startswith("sudo sh -c 'cd /root/kernel-build/linux && LLVM=1 "))
        self.assertIn('make -j$(nproc) bindeb-pkg LOCALVERSION=-r720srv ', command)
        self.assertNotIn('KCFLAGS', command)

    def test_zfs_control(self):
        control = render_zfs_control(
            package='zfs-modules-6.6.52-r720srv-r720srv',
            version='2.2.6',
            arch='amd64',
            kver='6.6.52-r720srv',
            localver='-r720srv',
            )
        self.assertIn('Package: zfs-modules-6.6.52-r720srv-r720srv\n', control)
        self.assertIn('Depends: linux-image-6.6.52-r720srv | linux-image, initramfs-tools\n', control)
        self.assertIn(' This package installs OpenZFS kernel modules under /lib/modules/6.6.52-r720srv/extra/zfs', control)

    def test_patch_apply_needs_commits(self):
        with self.assertRaises(ValueError):
            ApplyPatches(Settings({}), [])

    def test_subcommands(self):
        settings = Settings({'KERNEL_SERIES': '6.6', 'ZFS_VERSION': '2.2.6'})
        fetch = commands_for(argparse.Namespace(subcommand='fetch'), settings)
        self.assertEqual(repr(fetch[1]), "FetchKernel('6.6')")
        [package] = commands_for(argparse.Namespace(subcommand='package-zfs'), settings)
        self.assertEqual(repr(package), "PackageZfs('2.2.6')")
        [patch] = commands_for(argparse.Namespace(subcommand='patch-apply', commits=['abc1234']), settings)
        self.assertEqual(repr(patch), "ApplyPatches(['abc1234'])")
        [clean] = commands_for(argparse.Namespace(subcommand='clean'), settings)
        self.assertEqual(repr(clean), "Run('sudo rm -rf /root/kernel-build/linux')")
        [config] = commands_for(argparse.Namespace(subcommand='config', fragment=str(hardened_fragment)), settings)
        self.assertEqual(repr(config), '<ConfigureKernel with 12 commands>')


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)7s %(name)s %(message).5000s",
        )
    unittest.main()
