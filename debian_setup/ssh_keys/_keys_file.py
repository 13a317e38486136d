# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from pathlib import Path
from typing import Mapping
from typing import Sequence

import requests

from debian_setup._pubkey import InvalidKey
from debian_setup._pubkey import PubKey

_section_re = re.compile(r'\[(?P<name>[^\]]*)\]')


class KeysFile:
    """Users and their keys. Keys of [default] are given to every user.

    >>> f = KeysFile.parse('''
    ... # admins
    ... [default]
    ... ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl ops
    ... [deploy]
    ... ''')
    >>> f.users()
    ['deploy']
    >>> [k.comment for k in f.expected_keys('deploy')]
    ['ops']
    """

    def __init__(self, default_keys: Sequence[PubKey], user_keys: Mapping[str, Sequence[PubKey]]):
        self._default_keys = list(default_keys)
        self._user_keys = dict(user_keys)

    @classmethod
    def parse(cls, text: str) -> 'KeysFile':
        default_keys = []
        user_keys = {}
        current = None
        for line_number, raw_line in enumerate(text.splitlines(), 1):
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            section = _section_re.fullmatch(line)
            if section is not None:
                current = section['name'].strip()
                if not current:
                    raise KeysFileError(f"Line {line_number}: empty section name")
                if current != 'default':
                    user_keys.setdefault(current, [])
                continue
            if current is None:
                raise KeysFileError(f"Line {line_number}: key outside of a [user] section")
            try:
                key = PubKey(line)
            except InvalidKey as e:
                raise InvalidKey(f"Line {line_number}: {e}")
            if current == 'default':
                default_keys.append(key)
            else:
                user_keys[current].append(key)
        return cls(default_keys, user_keys)

    def users(self) -> Sequence[str]:
        return list(self._user_keys)

    def expected_keys(self, user: str) -> Sequence[PubKey]:
        return [*self._default_keys, *self._user_keys[user]]


def load_keys_file(source: str) -> KeysFile:
    """Read from a URL or from a local file."""
    if source.startswith(('https://', 'http://')):
        _logger.info("Fetch %s", source)
        response = requests.get(source, timeout=30)
        response.raise_for_status()
        text = response.text
    else:
        _logger.info("Read %s", source)
        text = Path(source).expanduser().read_text()
    return KeysFile.parse(text)


class KeysFileError(Exception):
    pass


_logger = logging.getLogger(__name__)
