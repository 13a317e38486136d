# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
from pathlib import Path

from debian_setup._config_files import AppendOnce
from debian_setup._core import Command
from debian_setup._core import Run
from debian_setup._ssh import ssh
from debian_setup._ssh import ssh_still

nvm_install_url = 'https://raw.githubusercontent.com/nvm-sh/nvm/refs/heads/master/install.sh'
loader_marker = '<<< node-env: nvm loader >>>'


def as_user(user: str, script: str) -> str:
    """Run a script in a login shell of the user.

    >>> print(as_user('tradebid', 'echo $HOME'))
    sudo -u tradebid -H bash -lc 'echo $HOME'
    """
    return f'sudo -u {shlex.quote(user)} -H bash -lc {shlex.quote(script)}'


def with_nvm(script: str) -> str:
    """Source nvm.sh first. Non-interactive shells skip .bashrc.

    >>> print(with_nvm('nvm use default'))
    set -e; export NVM_DIR="$HOME/.nvm"; . "$NVM_DIR/nvm.sh"; nvm use default
    """
    return f'set -e; export NVM_DIR="$HOME/.nvm"; . "$NVM_DIR/nvm.sh"; {script}'


def home_from_passwd(entry: str) -> str:
    """Home directory from a getent passwd line.

    >>> home_from_passwd('tradebid:x:1001:1001:,,,:/home/tradebid:/bin/bash\\n')
    '/home/tradebid'
    >>> home_from_passwd('')
    ''
    """
    fields = entry.strip().split(':')
    return fields[5] if len(fields) >= 7 else ''


def loader_snippet() -> str:
    return _loader_file.read_text()


def user_home(host: str, user: str) -> str:
    r = ssh_still(host, f'getent passwd {shlex.quote(user)}')
    home = home_from_passwd(r.stdout.decode()) if r.returncode == 0 else ''
    if not home or ssh_still(host, f'test -d {shlex.quote(home)}').returncode != 0:
        raise HomeNotFound(f"{host}: cannot resolve home of {user!r}")
    return home


class InstallCurl(Run):

    def __init__(self):
        super().__init__(
            'command -v curl > /dev/null || '
            '(sudo apt-get update -y && '
            'sudo DEBIAN_FRONTEND=noninteractive apt-get install -y curl ca-certificates)')


class InstallNvm(Command):
    """Latest NVM installer unless nvm.sh is already in place."""

    def __init__(self, user: str):
        self._user = user

    def __repr__(self):
        return f'{InstallNvm.__name__}({self._user!r})'

    def run(self, host):
        nvm_sh = user_home(host, self._user) + '/.nvm/nvm.sh'
        if ssh_still(host, f'sudo test -s {shlex.quote(nvm_sh)}').returncode == 0:
            _logger.info("%s: %s: NVM already present", host, self._user)
            return
        _logger.info("%s: %s: installing NVM", host, self._user)
        ssh(host, as_user(self._user, f'curl -fsSL {shlex.quote(nvm_install_url)} | bash'))


class AddNvmLoader(Command):

    def __init__(self, user: str):
        self._user = user

    def __repr__(self):
        return f'{AddNvmLoader.__name__}({self._user!r})'

    def run(self, host):
        bashrc = user_home(host, self._user) + '/.bashrc'
        AppendOnce(bashrc, loader_marker, loader_snippet(), owner=self._user).run(host)


class NvmRun(Run):

    def __init__(self, user: str, script: str, *, timeout: float = 600):
        super().__init__(as_user(user, with_nvm(script)), timeout=timeout)
        self._repr = f'{NvmRun.__name__}({user!r}, {script!r})'

    def __repr__(self):
        return self._repr


class HomeNotFound(Exception):
    pass


_loader_file = Path(__file__).with_name('nvm-loader.sh')
_logger = logging.getLogger(__name__)
