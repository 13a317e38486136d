# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import sys
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import Fleet
from debian_setup._logging import init_logging
from debian_setup._pubkey import SyncAuthorizedKeys
from debian_setup._users import AddUser
from debian_setup.config import global_config
from debian_setup.ssh_keys._keys_file import KeysFile
from debian_setup.ssh_keys._keys_file import load_keys_file


def commands(keys_file: KeysFile) -> Sequence[Command]:
    result = []
    for user in keys_file.users():
        result.append(AddUser(user))
        result.append(SyncAuthorizedKeys(user, keys_file.expected_keys(user)))
    return result


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.ssh_keys',
        description="Create listed users and enforce their authorized_keys.",
        )
    parser.add_argument(
        '--source', default=global_config.get('users_keys_url'),
        help="URL or local path of the keys file, users_keys_url from config by default")
    parser.add_argument('hosts', nargs='+', metavar='HOST')
    parsed_args = parser.parse_args(args)
    if not parsed_args.source:
        parser.error("No --source and no users_keys_url in config")
    keys_file = load_keys_file(parsed_args.source)
    _logger.info("Users: %s", ', '.join(keys_file.users()) or '(none)')
    fleet = Fleet(parsed_args.hosts)
    fleet.run(commands(keys_file))
    _logger.info("%s: keys enforced", fleet.name())
    return 0


_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('ssh_keys')
    exit(main(sys.argv[1:]))
