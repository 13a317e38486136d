# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from pathlib import Path

from debian_setup._core import CompositeCommand
from debian_setup._core import Run
from debian_setup._core import Write


class SshdKeyOnly(Write):
    """Drop-in that allows public key logins only. The main config is not edited."""

    def __init__(self, name: str, *, root: str = ''):
        super().__init__(_key_only.read_bytes(), f'{root}/etc/ssh/sshd_config.d/{name}')


class ReloadSshd(CompositeCommand):
    """Reload only if the resulting configuration is valid."""

    def __init__(self):
        super().__init__([
            Run('sudo sshd -t'),
            Run('sudo systemctl reload ssh'),
            ])


_key_only = Path(__file__).with_name('sshd-key-only.conf')
