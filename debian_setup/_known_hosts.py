# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex

from debian_setup._core import Command
from debian_setup._ssh import ssh


class AddOtherToOurKnownHosts(Command):

    def __init__(self, our_user, their_host, their_user, command='true'):
        self._their_host = their_host
        self._their_user = their_user
        self._our_user = our_user
        self._command = command

    def __repr__(self):
        return f'{AddOtherToOurKnownHosts.__name__}({self._our_user!r}, {self._their_host!r}, {self._their_user!r}, {self._command!r})'

    def run(self, host):
        _logger.info(
            "%s: %s: Add to known hosts on %s@%s",
            self._their_host, self._their_user, self._our_user, host)
        ssh(host, shlex.join([
            'sudo', '-u', self._our_user,
            'ssh', f'{self._their_user}@{self._their_host}',
            '-o', 'StrictHostKeyChecking=accept-new',
            '-o', 'BatchMode=yes',
            '-T',
            self._command,
            ]))


_logger = logging.getLogger(__name__)
