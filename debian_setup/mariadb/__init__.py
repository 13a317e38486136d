# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""MariaDB primary/replica cluster on ZFS, controlled over SSH.

Run from the primary or an admin host: python -m debian_setup.mariadb --help
"""
