# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Fan control daemon and its installer.

fan_control.py runs on the target alone and must not import anything from here.
"""
