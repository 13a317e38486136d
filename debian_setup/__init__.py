# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Provisioning wizards for Debian servers, kept in code under version control.

Every tool here composes a list of commands and runs it on a fleet:
the ZFS-root installer, the MariaDB primary/replica controller,
the kernel build tool, the fan control daemon installer,
the performance tuning and hardening script, SSH key enforcement
and the Node.js environment preparation.

Every action is formulated in terms of a command.
In most cases, it is a Run object
or an instance of a subclass of CompositeCommand.
It is desirable that commands be written in the most raw form,
so that it is clear what is being run and it is easy to copy.

Commands should be idempotent.
The second run must not "accumulate" changes.
Destructive commands (wiping disks, replacing replica data) are preceded
by an explicit question to the operator.

Commands should not be executed directly. Only via a fleet.
This allows for reordering, logging and interaction with the user.
Set DEBIAN_SETUP_ASK_FOR_CONFIRMATION=1 to confirm every step.

Scripts are intended to be run manually, one by one. If a script fails,
the human who runs it must investigate the problem. If it succeeds, it's still
recommended to examine the script output and what the script actually did.

Secrets are asked interactively and passed to remote commands on stdin,
never on a command line.
"""
from debian_setup._core import Command
from debian_setup._core import CompositeCommand
from debian_setup._core import Fleet
from debian_setup._core import InstallExecutable
from debian_setup._core import Run
from debian_setup._core import Write
from debian_setup._pubkey import AddPubKey
from debian_setup._pubkey import PubKey
from debian_setup._users import AddUser

__all__ = [
    'AddPubKey',
    'AddUser',
    'Command',
    'CompositeCommand',
    'Fleet',
    'InstallExecutable',
    'PubKey',
    'Run',
    'Write',
    ]
