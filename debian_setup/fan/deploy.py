# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import shlex
import sys
from pathlib import Path
from typing import Sequence

from debian_setup._core import Fleet
from debian_setup._core import InstallExecutable
from debian_setup._core import Run
from debian_setup._core import Write
from debian_setup._logging import init_logging
from debian_setup._ssh import ssh_still
from debian_setup._templates import render

_script_path = '/usr/local/sbin/fan_control.py'
_service_path = '/etc/systemd/system/fan-control.service'
_defaults_path = '/etc/default/fan-control'


class WriteDefaults(Write):
    """Install the environment file unless the operator has one already."""

    def __init__(self, *, overwrite: bool):
        super().__init__(_defaults.read_bytes(), _defaults_path, mode='u=rw,go=r')
        self._overwrite = overwrite

    def __repr__(self):
        return f'{WriteDefaults.__name__}({_defaults_path!r}, overwrite={self._overwrite})'

    def run(self, host):
        if not self._overwrite:
            if ssh_still(host, f'test -e {shlex.quote(_defaults_path)}').returncode == 0:
                _logger.info("%s: %s exists, kept as is", host, _defaults_path)
                return
        super().run(host)


def render_service() -> str:
    return render(_service_template, script_path=_script_path, defaults_path=_defaults_path)


def commands(*, overwrite_defaults: bool):
    return [
        Run('sudo apt-get update'),
        Run('sudo DEBIAN_FRONTEND=noninteractive apt-get install -y ipmitool python3'),
        InstallExecutable('root', 'fan/fan_control.py', '/usr/local/sbin/'),
        WriteDefaults(overwrite=overwrite_defaults),
        Write(render_service(), _service_path),
        Run('sudo systemctl daemon-reload'),
        Run('sudo systemctl enable --now fan-control.service'),
        ]


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.fan.deploy',
        description="Install the fan control daemon as a systemd service.",
        )
    parser.add_argument('hosts', nargs='+', metavar='HOST')
    parser.add_argument(
        '--overwrite-defaults', action='store_true',
        help=f"replace {_defaults_path} even if it exists")
    parsed_args = parser.parse_args(args)
    fleet = Fleet(parsed_args.hosts)
    fleet.run(commands(overwrite_defaults=parsed_args.overwrite_defaults))
    print(_summary.format(hosts=fleet.name()), flush=True)
    return 0


_summary = f'''
Installed on {{hosts}}:
  Script : {_script_path}
  Service: {_service_path}
  Env    : {_defaults_path}

Tune and test:
  sudo editor {_defaults_path}    # set VENDOR, IBM_BANKS, etc.
  sudo systemctl restart fan-control.service
  journalctl -u fan-control.service -f

Quick sanity (IBM x3500):
  VENDOR=ibm IBM_BANKS=0x01 MIN_PCT=12 MAX_PCT=50 INTERVAL=10
'''

_defaults = Path(__file__).with_name('fan-control.defaults')
_service_template = Path(__file__).with_name('fan-control.service.j2')
_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('fan_deploy')
    exit(main(sys.argv[1:]))
