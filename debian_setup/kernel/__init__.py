# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Hardened kernel build on a remote build host.

Clang, LLD and ThinLTO; Debian packages for amd64; optional prebuilt
OpenZFS modules package.
"""
