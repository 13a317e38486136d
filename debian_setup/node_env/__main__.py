# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import shlex
import sys
from typing import List
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import Fleet
from debian_setup._core import RunAllowingFailure
from debian_setup._logging import init_logging
from debian_setup._users import RequireUser
from debian_setup.node_env._commands import AddNvmLoader
from debian_setup.node_env._commands import InstallCurl
from debian_setup.node_env._commands import InstallNvm
from debian_setup.node_env._commands import NvmRun
from debian_setup.node_env._commands import as_user
from debian_setup.node_env._commands import with_nvm


def commands(user: str, node_version: str) -> List[Command]:
    v = shlex.quote(node_version)
    return [
        RequireUser(user),
        InstallCurl(),
        InstallNvm(user),
        AddNvmLoader(user),
        NvmRun(user, f'nvm install {v}', timeout=1800),
        NvmRun(user, f'nvm alias default {v}'),
        NvmRun(user, 'nvm use default'),
        NvmRun(user, 'npm install -g pm2', timeout=1800),
        RunAllowingFailure(
            as_user(user, with_nvm('node -v && npm -v && pm2 -v')),
            "node, npm and pm2 verification"),
        ]


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.node_env',
        description="Prepare NVM, Node.js and PM2 for an existing user. No apps, no services.",
        )
    parser.add_argument('--user', required=True, help="owner of NVM, Node.js and PM2")
    parser.add_argument('--node', default='lts/*', help="Node.js version, e.g. lts/*, node, 22.16.0")
    parser.add_argument('hosts', nargs='+', metavar='HOST')
    parsed_args = parser.parse_args(args)
    fleet = Fleet(parsed_args.hosts)
    fleet.run(commands(parsed_args.user, parsed_args.node))
    _logger.info("%s: environment ready for %s: node %s, pm2", fleet.name(), parsed_args.user, parsed_args.node)
    _logger.info("Apps, .env files and services are not set up by this tool")
    return 0


_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('node_env')
    exit(main(sys.argv[1:]))
