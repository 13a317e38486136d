# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
import subprocess


def ssh(host: str, command: str, *, timeout: float = 600):
    r = subprocess.run(
        _build(host, command),
        stdout=subprocess.PIPE,
        # Remote commands must never wait for the operator's terminal.
        stdin=subprocess.DEVNULL,
        timeout=timeout,
        )
    if r.returncode == 255:
        raise SSHCannotConnect(host)
    r.check_returncode()
    return r


def ssh_still(host: str, command: str):
    """Run and report. The exit code is for the caller to judge."""
    r = subprocess.run(
        _build(host, command),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        timeout=600,
        )
    if r.returncode == 255:
        raise SSHCannotConnect(r.stderr.decode(errors='replace'))
    return r


def ssh_input(host: str, command: str, stdin: bytes, *, timeout: float = 60):
    r = subprocess.run(
        _build(host, command),
        input=stdin,
        stdout=subprocess.PIPE,
        timeout=timeout,
        )
    if r.returncode == 255:
        raise SSHCannotConnect(host)
    r.check_returncode()
    return r


def _build(host, command):
    # In BatchMode, execution fails if interactive input is required.
    full_command = ['ssh', '-oBatchMode=yes', host, command]
    _logger.info("Run: %s", shlex.join(full_command))
    return full_command


class SSHCannotConnect(Exception):
    pass


_logger = logging.getLogger(__name__)
