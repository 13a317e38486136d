# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex

from debian_setup._core import Command
from debian_setup._core import Run
from debian_setup._ssh import ssh_input
from debian_setup._ssh import ssh_still


class AppendOnce(Command):
    """Append a marked snippet to a file unless the marker is there."""

    def __init__(self, path: str, marker: str, text: str, *, owner: str = 'root'):
        self._path = path
        self._marker = marker
        self._text = text
        self._owner = owner

    def __repr__(self):
        return f'{AppendOnce.__name__}({self._path!r}, {self._marker!r}, ...)'

    def snippet(self) -> bytes:
        return f'\n# {self._marker}\n{self._text.rstrip()}\n'.encode('utf8')

    def run(self, host):
        path = _quote_home(self._path)
        marker = shlex.quote(self._marker)
        r = ssh_still(host, f'sudo grep -Fq -- {marker} {path}')
        if r.returncode == 0:
            _logger.info("%s: %s: marker present, skip", host, self._path)
            return
        owner = shlex.quote(self._owner)
        ssh_input(host, f'sudo -u {owner} tee -a {path} > /dev/null', self.snippet())
        _logger.info("%s: %s: snippet appended", host, self._path)


class SetGrubCmdline(Run):

    def __init__(self, value: str, *, path: str = '/etc/default/grub'):
        expression = f's|^GRUB_CMDLINE_LINUX="[^"]*"|GRUB_CMDLINE_LINUX="{value}"|'
        super().__init__(f'sudo sed -i {shlex.quote(expression)} {shlex.quote(path)}')


class AddGrubCmdlineArg(Run):
    """Prepend an argument to the kernel command line if absent."""

    def __init__(self, arg: str):
        escaped = arg.replace('.', '\\.')
        expression = f'/{escaped}/! s/^GRUB_CMDLINE_LINUX="/&{arg} /'
        super().__init__(f'sudo sed -i {shlex.quote(expression)} /etc/default/grub')


class RemoveGrubCmdlineArg(Run):

    def __init__(self, arg: str):
        escaped = arg.replace('.', '\\.')
        expression = f'/^GRUB_CMDLINE_LINUX=/ s/{escaped} \\?//'
        super().__init__(f'sudo sed -i {shlex.quote(expression)} /etc/default/grub')


class RemoveManagedFile(Run):
    """Delete a file if it was written by these tools, keep it otherwise."""

    def __init__(self, path: str):
        p = shlex.quote(path)
        super().__init__(
            f'if sudo grep -qsF -- {shlex.quote(managed_marker)} {p}; '
            f'then sudo rm -f {p}; fi')


def _quote_home(path: str) -> str:
    """Quote a path but keep leading ~user expandable.

    >>> _quote_home('~node/.bashrc')
    '~node/.bashrc'
    >>> _quote_home('/etc/my file')
    "'/etc/my file'"
    """
    head, sep, tail = path.partition('/')
    if head.startswith('~') and shlex.quote(head[1:]) == head[1:]:
        return head + sep + shlex.quote(tail) if tail else head
    return shlex.quote(path)


managed_marker = 'Managed by debian_setup'
_logger = logging.getLogger(__name__)
