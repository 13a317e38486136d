# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Performance tuning and optional SSH hardening of a Debian server.

Every file written here starts with the same managed-by line;
uninstallation removes only files that carry it.
"""
