# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import base64
import binascii
import logging
import re
import shlex
import struct
from typing import Collection
from typing import Sequence
from typing import Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import load_ssh_public_key

from debian_setup._core import Command
from debian_setup._ssh import ssh
from debian_setup._ssh import ssh_input
from debian_setup._ssh import ssh_still

_key_type_re = re.compile(r'^(ssh-(rsa|ed25519|dss)|ecdsa-sha2-|sk-)')


class PubKey:
    """OpenSSH public key line: algorithm, base64 body, optional comment.

    >>> k = PubKey('ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl alice@laptop')
    >>> k.algo, k.comment
    ('ssh-ed25519', 'alice@laptop')
    >>> k.equal(PubKey(k.algo + ' ' + k.body))
    True
    """

    def __init__(self, line: str):
        self.line = ' '.join(line.split())
        [self.algo, self.body, *rest] = self.line.split(' ', maxsplit=2) + ['']
        self.comment = rest[0] if rest else ''
        if not self.body:
            raise InvalidKey(f"No key body: {line!r}")
        if not _key_type_re.match(self.algo):
            raise InvalidKey(f"Unexpected key type {self.algo!r}: {line!r}")
        self._validate()

    def _validate(self):
        try:
            blob = base64.b64decode(self.body, validate=True)
        except binascii.Error:
            raise InvalidKey(f"Key body is not base64: {self.line!r}")
        if len(blob) < 4:
            raise InvalidKey(f"Key body is too short: {self.line!r}")
        [name_length] = struct.unpack('>I', blob[:4])
        embedded_algo = blob[4:4 + name_length].decode('ascii', errors='replace')
        if embedded_algo != self.algo:
            raise InvalidKey(f"Key type {self.algo!r} does not match body {embedded_algo!r}")
        try:
            load_ssh_public_key(f'{self.algo} {self.body}'.encode('ascii'))
        except UnsupportedAlgorithm:
            # Security keys (sk-*) and DSA are not loadable everywhere.
            # The body was checked to be a well-formed blob of the declared type.
            _logger.debug("Key type %s is not loadable, structure checked only", self.algo)
        except ValueError as e:
            raise InvalidKey(f"Malformed key {self.line!r}: {e}")

    def equal(self, other: 'PubKey'):
        return (self.algo, self.body) == (other.algo, other.body)

    def __repr__(self):
        if not self.comment:
            return f'{PubKey.__name__}({self.algo!r} ...{self.body[-8:]})'
        return f'{PubKey.__name__}({self.algo!r} ...{self.body[-8:]} {self.comment!r})'


class AddPubKey(Command):

    def __init__(self, username, pubkey: PubKey):
        self._username = username
        self._pubkey: PubKey = pubkey

    def __repr__(self):
        return f'{AddPubKey.__name__}({self._username!r}, {self._pubkey!r})'

    def run(self, host):
        _logger.info("%s: %s: Update ~/.ssh/authorized_keys", host, self._username)
        u = shlex.quote(self._username)
        ssh(host, f'sudo -u {u} mkdir -m 0700 -p ~{u}/.ssh')
        ak = f'~{u}/.ssh/authorized_keys'
        stdin = self._pubkey.line.encode('ascii') + b'\n'
        ssh_input(host, f'sudo -u {u} tee -a {ak} > /dev/null', stdin=stdin)
        ssh(host, f'sudo -u {u} sort -u -o {ak} {ak}')
        # New file is created with 664 permissions due to umask. Set proper permissions.
        ssh(host, f'sudo -u {u} chmod u=rw,go= {ak}')


class SyncAuthorizedKeys(Command):
    """Make authorized_keys exactly the expected set. Report drift."""

    def __init__(self, username: str, keys: Collection[PubKey]):
        self._username = username
        self._expected = sorted({k.line for k in keys})

    def __repr__(self):
        return f'{SyncAuthorizedKeys.__name__}({self._username!r}, <{len(self._expected)} keys>)'

    def run(self, host):
        u = shlex.quote(self._username)
        ak = f'~{u}/.ssh/authorized_keys'
        ssh(host, f'sudo install -d -m 0700 -o {u} -g {u} ~{u}/.ssh')
        r = ssh_still(host, f'sudo cat {ak}')
        current = r.stdout.decode('utf8').splitlines() if r.returncode == 0 else []
        [removed, added] = key_drift(current, self._expected)
        if not removed and not added:
            _logger.info("%s: %s: keys already up to date", host, self._username)
            return
        _logger.warning("%s: %s: key drift detected", host, self._username)
        for line in removed:
            _logger.warning("%s: %s: - %s", host, self._username, line)
        for line in added:
            _logger.warning("%s: %s: + %s", host, self._username, line)
        content = ''.join(line + '\n' for line in self._expected)
        ssh_input(
            host,
            f'sudo install -m 0600 -o {u} -g {u} /dev/stdin {ak}',
            content.encode('utf8'))
        _logger.info("%s: %s: authorized_keys updated", host, self._username)


def key_drift(current: Sequence[str], expected: Sequence[str]) -> Tuple[Sequence[str], Sequence[str]]:
    """Compare key lines as sorted unique sets.

    >>> key_drift(['b', 'a', '', 'a'], ['a', 'c'])
    (['b'], ['c'])
    >>> key_drift(['a'], ['a'])
    ([], [])
    """
    current_set = {' '.join(line.split()) for line in current if line.strip()}
    expected_set = {' '.join(line.split()) for line in expected if line.strip()}
    return sorted(current_set - expected_set), sorted(expected_set - current_set)


class InvalidKey(Exception):
    pass


_logger = logging.getLogger(__name__)
