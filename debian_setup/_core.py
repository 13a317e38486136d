# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
import re
import shlex
from abc import ABCMeta
from abc import abstractmethod
from pathlib import Path
from pathlib import PurePosixPath
from typing import Collection
from typing import Sequence
from typing import Union

from debian_setup._ssh import ssh
from debian_setup._ssh import ssh_input
from debian_setup._ssh import ssh_still


class Command(metaclass=ABCMeta):

    @abstractmethod
    def run(self, host: str):
        pass


class Run(Command):

    def __init__(self, command, *, timeout: float = 600):
        self._command = command
        self._timeout = timeout

    def __repr__(self):
        return f'{Run.__name__}({self._command!r})'

    def run(self, host):
        ssh(host, self._command, timeout=self._timeout)


class RunAllowingFailure(Command):
    """Run a command whose failure is expected on some hosts. Warn and go on."""

    def __init__(self, command, warning: str = ''):
        self._command = command
        self._warning = warning

    def __repr__(self):
        return f'{RunAllowingFailure.__name__}({self._command!r})'

    def run(self, host):
        r = ssh_still(host, self._command)
        if r.returncode != 0:
            stderr = r.stderr.decode(errors='replace').strip()
            _logger.warning("%s: %s: exit code %d: %s", host, self._warning or self._command, r.returncode, stderr)


class Input(Command):
    """Feed a local file to a remote command.

    Relative paths are resolved against the package directory.
    """

    def __init__(self, local_path: Union[str, os.PathLike], command: str):
        self._repr = f'{Input.__name__}({str(local_path)!r}, {command!r})'
        path = Path(local_path).expanduser()
        self._local_path = Path(self._root, path)
        if not self._local_path.exists():
            raise ValueError(f"Does not exist: {self._local_path}")
        self._command = command

    def __repr__(self):
        return self._repr

    def run(self, host):
        ssh_input(host, self._command, self._local_path.read_bytes())

    _root = Path(__file__).parent


class Write(Command):
    """Install generated content at an absolute path. Make dirs.

    >>> w = Write('PermitRootLogin no\\n', '/etc/ssh/sshd_config.d/00 key.conf')
    >>> w._command
    "sudo install /dev/stdin '/etc/ssh/sshd_config.d/00 key.conf' -o root -g root -m u=rw,go=r -D"
    >>> Write('x', 'etc/x') # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    ValueError: Target must be absolute, got 'etc/x'
    """

    def __init__(
            self,
            content: Union[str, bytes],
            target: str,
            *,
            owner: str = 'root',
            mode: str = 'u=rw,go=r',
            ):
        if not target.startswith('/'):
            raise ValueError(f"Target must be absolute, got {target!r}")
        self._content = content.encode('utf8') if isinstance(content, str) else content
        self._target = target
        params = shlex.join(['-o', owner, '-g', owner, '-m', mode, '-D'])
        self._command = f'sudo install /dev/stdin {shlex.quote(target)} {params}'

    def __repr__(self):
        return f'{Write.__name__}(<{len(self._content)} bytes>, {self._target!r})'

    def run(self, host):
        ssh_input(host, self._command, self._content)


class _Install(Input):
    """Upload file. Set permissions. Make dirs (-D is passed by default).

    >>> from pathlib import Path
    >>> print(Path(__file__).name)
    _core.py
    >>> print(_Install('nodeapp', str(Path(__file__)), '~nodeapp/q w/e/')._command)
    sudo install /dev/stdin ~nodeapp/'q w/e/_core.py' -o nodeapp -g nodeapp -D
    >>> print(_Install('root', str(Path(__file__)), '/e/s/d/')._command)
    sudo install /dev/stdin /e/s/d/_core.py -o root -g root -D
    >>> _Install('root', str(Path(__file__)), '/e/s/d') # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    RuntimeError: Target must be a directory and ends with /, got '/e/s/d'
    """

    def __init__(self, user: str, local_path: str, target_dir: str, *params: str, name: str = ''):
        if not target_dir.endswith('/'):
            raise RuntimeError(f"Target must be a directory and ends with /, got {target_dir!r}")
        target = PurePosixPath(target_dir, name or Path(local_path).name)
        target_quoted = self._quote_path(target)
        params_joined = shlex.join([*params, '-o', user, '-g', user, '-D'])
        command = f'sudo install /dev/stdin {target_quoted} {params_joined}'
        super().__init__(local_path, command)

    @staticmethod
    def _quote_path(target: PurePosixPath):
        if target.parts[0].startswith('~'):
            if shlex.quote(target.parts[0][1:]) == target.parts[0][1:]:
                return target.parts[0] + '/' + shlex.quote(str(PurePosixPath(*target.parts[1:])))
        return shlex.quote(str(target))


class InstallExecutable(_Install):

    def __init__(self, user: str, local_path: str, target_dir: str, *, name: str = ''):
        super().__init__(user, local_path, target_dir, '-m', 'u=rwx,go=rx', name=name)


class CompositeCommand(Command):

    def __init__(self, commands: Sequence[Command]):
        self._commands: Sequence[Command] = commands

    def __repr__(self):
        return f'<{self.__class__.__name__} with {len(self._commands)} commands>'

    def run(self, host):
        for command in self._commands:
            command.run(host)


class Fleet:

    def __init__(self, hosts: Sequence[str]):
        if not hosts:
            raise ValueError("Fleet must have at least one host")
        self._hosts = hosts

    def run(self, commands: Sequence[Command]):
        for host in self._hosts:
            questionnaire = Questionnaire("Run on")
            for command in commands:
                print(f"Command {command!r}", flush=True)
                if questionnaire.user_agrees_with(host):
                    command.run(host)
                else:
                    _logger.info("%s: skipped: %r", host, command)

    def name(self):
        return _HostGroup(self._hosts).short_name()


class Questionnaire:

    def __init__(self, prompt):
        self._user_agrees = None
        self._should_ask_user = True
        self._prompt = prompt

    def user_agrees_with(self, question):
        if not os.getenv('DEBIAN_SETUP_ASK_FOR_CONFIRMATION', ''):
            return True
        prompt = f"{self._prompt} {question} [y,n,a,d]? "
        if self._should_ask_user:
            while True:
                answer = input(prompt)
                answer = answer[:1]
                answer = answer.lower()
                if answer == 'y':
                    self._user_agrees = True
                    self._should_ask_user = True
                elif answer == 'n':
                    self._user_agrees = False
                    self._should_ask_user = True
                elif answer == 'a':
                    self._user_agrees = True
                    self._should_ask_user = False
                elif answer == 'd':
                    self._user_agrees = False
                    self._should_ask_user = False
                else:
                    self._user_agrees = None
                if self._user_agrees is not None:
                    break
        else:
            assert self._user_agrees is not None
            answer = 'a' if self._user_agrees else 'd'
            print(prompt + answer, flush=True)
        return self._user_agrees


class _HostGroup:
    """Make short name for host group.

    >>> group = _HostGroup(['db001.lan', 'db002.lan', 'db003.lan'])
    >>> group.short_name()
    'db{001..003}.lan'
    >>> group = _HostGroup(['db001.lan1', 'db002.lan2', 'db003.lan3'])
    >>> group.short_name()
    'db001.lan1, db002.lan2, db003.lan3'
    >>> group = _HostGroup(['dba-01.lan', 'dbb-02.lan', 'dbc-03.lan'])
    >>> group.short_name()
    'dba-01.lan, dbb-02.lan, dbc-03.lan'
    >>> group = _HostGroup(['host1', 'host2', 'host4', 'host5'])
    >>> group.short_name()
    'host{1..2}, host{4..5}'
    >>> _HostGroup(['root@192.168.1.223', 'root@192.168.1.224']).short_name()
    'root@192.168.1.{223..224}'
    """

    _name_re = re.compile(r'(?P<prefix>(?:[a-zA-Z0-9@._-]*[a-zA-Z@._-])?)(?P<digits>\d+)(?P<suffix>[a-zA-Z._-]*)')

    def __init__(self, hosts: Collection[str]):
        [first, *rest] = sorted(hosts)
        self._groups = [[first]]
        for host in rest:
            self._add_host(host)

    def short_name(self) -> str:
        return ', '.join([self._group_name(group) for group in self._groups])

    def _group_name(self, hosts: Sequence[str]):
        if len(hosts) == 0:
            return ''
        if len(hosts) == 1:
            return hosts[0]
        [first, *_, last] = hosts
        first_match = self._name_re.fullmatch(first)
        assert first_match is not None
        last_match = self._name_re.fullmatch(last)
        assert last_match is not None
        host_sequence = '{' + first_match['digits'] + '..' + last_match['digits'] + '}'
        return first_match['prefix'] + host_sequence + first_match['suffix']

    def _add_host(self, host: str):
        if not self._groups:
            self._groups.append([host])
            return
        if self._is_adjacent(self._groups[-1][-1], host):
            self._groups[-1].append(host)
        else:
            self._groups.append([host])

    def _is_adjacent(self, first: str, other: str) -> bool:
        first_match = self._name_re.fullmatch(first)
        other_match = self._name_re.fullmatch(other)
        if first_match is None or other_match is None:
            return False
        if first_match['prefix'] != other_match['prefix']:
            return False
        if first_match['suffix'] != other_match['suffix']:
            return False
        if int(first_match['digits']) + 1 != int(other_match['digits']):
            return False
        return True


_logger = logging.getLogger(__name__)
