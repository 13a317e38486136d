# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Install Debian with root on ZFS from a live system.

The target is booted from live media and reached as root over SSH.
Selected disks are wiped, partitioned, pooled (bpool for /boot, rpool for /),
bootstrapped and made bootable with GRUB for BIOS or UEFI.
"""
