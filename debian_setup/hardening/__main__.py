# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import sys
from typing import List
from typing import Optional
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import Fleet
from debian_setup._logging import init_logging
from debian_setup._prompts import ask
from debian_setup._prompts import choose
from debian_setup._prompts import confirm
from debian_setup._pubkey import AddPubKey
from debian_setup._pubkey import PubKey
from debian_setup._ssh import ssh
from debian_setup._sshd import ReloadSshd
from debian_setup._sshd import SshdKeyOnly
from debian_setup._users import list_login_users
from debian_setup.hardening._commands import ApplyArcLimits
from debian_setup.hardening._commands import ApplySysctl
from debian_setup.hardening._commands import DisableIpv6
from debian_setup.hardening._commands import InstallDependencies
from debian_setup.hardening._commands import SetLimits
from debian_setup.hardening._commands import TuneIoAndCpu
from debian_setup.hardening._commands import TuneNics
from debian_setup.hardening._commands import sshd_drop_in_name
from debian_setup.hardening._commands import uninstall_commands
from debian_setup.hardening._profiles import Profile
from debian_setup.hardening._profiles import profiles


def tuning_commands(
        profile: Profile,
        *,
        hugepages: bool,
        turbo: bool,
        dynamic_arc: bool,
        ) -> List[Command]:
    return [
        InstallDependencies(),
        ApplySysctl(profile),
        ApplyArcLimits(dynamic=dynamic_arc),
        TuneNics(profile.qdisc),
        TuneIoAndCpu(hugepages=hugepages, turbo=turbo),
        SetLimits(),
        ]


def ssh_hardening_commands(key_user: Optional[str], key: Optional[PubKey]) -> List[Command]:
    commands = []
    if key_user is not None and key is not None:
        commands.append(AddPubKey(key_user, key))
    commands.append(SshdKeyOnly(sshd_drop_in_name))
    commands.append(ReloadSshd())
    return commands


def _ask_ssh_hardening(host: str) -> List[Command]:
    if not confirm("Enable SSH hardening?"):
        return []
    if not confirm("Install SSH key?"):
        return ssh_hardening_commands(None, None)
    users = list_login_users(ssh(host, 'getent passwd').stdout.decode())
    skip = "Skip"
    user = choose("Install the key for", [*users, skip])
    if user == skip:
        return ssh_hardening_commands(None, None)
    key = PubKey(ask("Paste public key"))
    return ssh_hardening_commands(user, key)


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.hardening',
        description="Performance tuning and SSH hardening.",
        )
    parser.add_argument('host', metavar='HOST')
    parser.add_argument('--profile', choices=list(profiles))
    parser.add_argument('--no-hugepages', action='store_true', help="set THP to never instead of madvise")
    parser.add_argument('--no-turbo', action='store_true', help="disable Intel turbo boost")
    parser.add_argument('--static-arc', action='store_true', help="fixed 8 GiB/1 GiB ARC instead of RAM-based")
    parser.add_argument('--uninstall', action='store_true', help="remove everything written by this tool")
    parsed_args = parser.parse_args(args)
    fleet = Fleet([parsed_args.host])
    if parsed_args.uninstall:
        fleet.run(uninstall_commands())
        _logger.info("Uninstalled. Reboot recommended.")
        return 0
    if parsed_args.profile is None:
        profile = profiles[choose("Choose network profile", list(profiles))]
    else:
        profile = profiles[parsed_args.profile]
    ssh_commands = _ask_ssh_hardening(parsed_args.host)
    fleet.run([
        *tuning_commands(
            profile,
            hugepages=not parsed_args.no_hugepages,
            turbo=not parsed_args.no_turbo,
            dynamic_arc=not parsed_args.static_arc,
            ),
        *ssh_commands,
        DisableIpv6(),
        ])
    _logger.info("Complete. Reboot recommended.")
    return 0


_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('hardening')
    exit(main(sys.argv[1:]))
