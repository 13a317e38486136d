# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Make authorized_keys of every listed user exactly match a central keys file."""
