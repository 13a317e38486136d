# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
import subprocess

from debian_setup._core import Command
from debian_setup._ssh import ssh_still


class AddUser(Command):

    def __init__(self, username):
        self._username = username

    def __repr__(self):
        return f'{AddUser.__name__}({self._username!r})'

    def run(self, host):
        u = shlex.quote(self._username)
        r = ssh_still(host, f'sudo adduser --disabled-password --gecos "" {u}')
        if r.returncode == 0:
            _logger.info("%s: %s: user added", host, self._username)
        else:
            if b'exist' in r.stderr.lower():
                _logger.info("%s: %s: user already exists", host, self._username)
            else:
                _logger.error("%s: %s: failure: %s", host, self._username, r.stderr)
                raise subprocess.CalledProcessError(r.returncode, r.args, r.stdout, r.stderr)


class RequireUser(Command):

    def __init__(self, username):
        self._username = username

    def __repr__(self):
        return f'{RequireUser.__name__}({self._username!r})'

    def run(self, host):
        r = ssh_still(host, f'id -u {shlex.quote(self._username)}')
        if r.returncode != 0:
            raise UserDoesNotExist(f"{host}: user {self._username!r} does not exist")
        _logger.info("%s: %s: uid %s", host, self._username, r.stdout.decode().strip())


def list_login_users(passwd: str):
    """Names of accounts from getent passwd output, UID below nobody.

    >>> list_login_users('root:x:0:0:root:/root:/bin/bash\\nnobody:x:65534:65534::/:/usr/sbin/nologin\\nann:x:1000:1000::/home/ann:/bin/bash\\n')
    ['root', 'ann']
    """
    users = []
    for line in passwd.splitlines():
        fields = line.split(':')
        if len(fields) < 7 or not fields[2].isdigit():
            continue
        if int(fields[2]) < 65534:
            users.append(fields[0])
    return users


class UserDoesNotExist(Exception):
    pass


_logger = logging.getLogger(__name__)
