# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from posixpath import isabs
from typing import Mapping

_scope = '''\
Scope (locked):
- Xeon E5-v2 NUMA, HZ=250, PREEMPT_NONE, NO_HZ_IDLE
- NVMe + SAS (megaraid_sas JBOD) + AHCI; SES enclosure; sg; async scan
- NIC: Broadcom BCM5720 (tg3), bonding built-in; VLAN
- FS: ext4, vfat + NLS; EFI/EFIVAR; ZFS out-of-tree (DKMS or prebuilt)
- Security: SMEP/SMAP, PTI, KASLR, STRICT_KERNEL_RWX, FORTIFY, usercopy, refcount
- eBPF JIT hardened (unpriv off); kTLS ULP (no device offload)
- IOMMU strict default; passthrough variant available
- USB basics (EHCI, storage, HID); framebuffer console; mgag200
- RAS: EDAC SBridge, MCE, PCIe AER/ECRC, Dell SMBIOS/RBU, itco_wdt, thermals
- Essentials: proc, sysfs, tmpfs, kmod, partitions, firmware loader, HPET, RNG
- MGLRU enabled, CC optimize for performance
'''


class Settings:
    """Build parameters from the operator's environment.

    Paths are on the build host. Commands there run as root, so the
    defaults are under /root.

    >>> s = Settings({'BUILDJOBS': '12', 'LOCALVER': '-lab'})
    >>> s.workdir, s.jobs, s.localver, s.kernel_series
    ('/root/kernel-build', '12', '-lab', 'auto')
    >>> Settings({}).jobs
    '$(nproc)'
    >>> Settings({'WORKDIR': 'build'}) # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    ValueError: WORKDIR must be an absolute path on the build host, got 'build'
    """

    def __init__(self, env: Mapping[str, str]):
        self.kernel_series = env.get('KERNEL_SERIES') or 'auto'
        self.workdir = _absolute(env, 'WORKDIR', '/root/kernel-build')
        self.localver = env.get('LOCALVER') or '-r720srv'
        self.zfs_version = env.get('ZFS_VERSION') or 'auto'
        self.zfs_src = env.get('ZFS_SRC') or 'https://github.com/openzfs/zfs'
        self.zfs_workdir = _absolute(env, 'ZFS_WORKDIR', '/root/zfs-build')
        self.extra_kcflags = env.get('EXTRA_KCFLAGS', '')
        jobs = env.get('BUILDJOBS', '')
        if not jobs:
            self.jobs = '$(nproc)'
        elif jobs.isdigit() and int(jobs) > 0:
            self.jobs = jobs
        else:
            raise ValueError(f"BUILDJOBS must be a positive integer, got {jobs!r}")

    @property
    def tree(self) -> str:
        return self.workdir + '/linux'

    def jobs_for_display(self) -> str:
        return 'nproc of the build host' if self.jobs == '$(nproc)' else self.jobs


def plan_text(settings: Settings, series: str, zfs_version: str) -> str:
    lines = [
        "=== Plan ===",
        f"Kernel series (LTS): v{series}",
        f"OpenZFS version:     {zfs_version}",
        f"Workdir:             {settings.workdir}",
        f"Localversion:        {settings.localver}",
        f"Jobs:                {settings.jobs_for_display()}",
        "ThinLTO:             enabled (Clang/LLD)",
        f"EXTRA_KCFLAGS:       '{settings.extra_kcflags}'",
        ]
    return '\n'.join(lines) + '\n' + _scope


def _absolute(env: Mapping[str, str], name: str, default: str) -> str:
    value = env.get(name) or default
    if not isabs(value):
        raise ValueError(f"{name} must be an absolute path on the build host, got {value!r}")
    return value.rstrip('/') or '/'
