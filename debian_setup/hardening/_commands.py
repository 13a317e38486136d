# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
from pathlib import Path
from typing import Sequence

from debian_setup._config_files import AddGrubCmdlineArg
from debian_setup._config_files import RemoveGrubCmdlineArg
from debian_setup._config_files import RemoveManagedFile
from debian_setup._core import Command
from debian_setup._core import CompositeCommand
from debian_setup._core import Run
from debian_setup._core import Write
from debian_setup._ssh import ssh
from debian_setup._ssh import ssh_still
from debian_setup._templates import render
from debian_setup.hardening._profiles import Profile
from debian_setup.hardening._profiles import render_sysctl
from debian_setup.hardening._tuning import arc_limits
from debian_setup.hardening._tuning import parse_lines
from debian_setup.hardening._tuning import parse_mem_total
from debian_setup.hardening._tuning import parse_ring_params
from debian_setup.hardening._tuning import ring_arguments

sysctl_path = '/etc/sysctl.d/99-perf-tune.conf'
bbr_module_path = '/etc/modules-load.d/perf-tune-bbr.conf'
arc_path = '/etc/modprobe.d/zfs.conf'
io_rules_path = '/etc/udev/rules.d/60-perf-tune-io.rules'
cpu_unit_path = '/etc/systemd/system/perf-tune-cpu.service'
limits_path = '/etc/security/limits.d/99-perf-tune.conf'
sshd_drop_in_name = '99-perf-tune-hardening.conf'


class InstallDependencies(Run):

    def __init__(self):
        super().__init__(
            'command -v ethtool > /dev/null && command -v tc > /dev/null && command -v gawk > /dev/null || '
            '(sudo apt-get update && sudo DEBIAN_FRONTEND=noninteractive apt-get install -y ethtool iproute2 gawk)')


class ApplySysctl(CompositeCommand):

    def __init__(self, profile: Profile):
        commands = [Write(render_sysctl(profile), sysctl_path)]
        if profile.needs_bbr():
            commands.append(Write(_bbr_module.read_bytes(), bbr_module_path))
            commands.append(Run('sudo modprobe tcp_bbr'))
        commands.append(Run('sudo sysctl --system > /dev/null'))
        super().__init__(commands)
        self._repr = f'{ApplySysctl.__name__}({profile.name!r})'

    def __repr__(self):
        return self._repr


class ApplyArcLimits(Command):
    """Persist ARC limits and apply them now if ZFS is loaded."""

    def __init__(self, *, dynamic: bool):
        self._dynamic = dynamic

    def __repr__(self):
        return f'{ApplyArcLimits.__name__}(dynamic={self._dynamic})'

    def run(self, host):
        if self._dynamic:
            mem_total = parse_mem_total(ssh(host, 'cat /proc/meminfo').stdout.decode())
        else:
            mem_total = 0
        [arc_max, arc_min] = arc_limits(mem_total, dynamic=self._dynamic)
        _logger.info("%s: ARC max %d, min %d bytes", host, arc_max, arc_min)
        content = render(_arc_template, dynamic=self._dynamic, arc_max=arc_max, arc_min=arc_min)
        Write(content, arc_path).run(host)
        if ssh_still(host, 'test -d /sys/module/zfs/parameters').returncode != 0:
            _logger.info("%s: ZFS is not loaded, limits apply on next module load", host)
            return
        # Lower min first: the kernel rejects a max below the current min.
        for name, value in (('zfs_arc_min', 0), ('zfs_arc_max', arc_max), ('zfs_arc_min', arc_min)):
            ssh(host, f'echo {value} | sudo tee /sys/module/zfs/parameters/{name} > /dev/null')


class TuneNics(Command):
    """Raise ring buffers to maximums and set qdisc on physical interfaces."""

    def __init__(self, qdisc: str):
        self._qdisc = qdisc

    def __repr__(self):
        return f'{TuneNics.__name__}({self._qdisc!r})'

    def run(self, host):
        listing = ssh(host, 'for i in /sys/class/net/*; do if [ -e "$i/device" ]; then basename "$i"; fi; done')
        interfaces = parse_lines(listing.stdout.decode())
        if not interfaces:
            _logger.warning("%s: no physical interfaces found", host)
        for interface in interfaces:
            i = shlex.quote(interface)
            r = ssh_still(host, f'sudo ethtool -g {i}')
            if r.returncode == 0:
                [maxima, current] = parse_ring_params(r.stdout.decode())
                args = ring_arguments(maxima, current)
                if args:
                    r = ssh_still(host, f'sudo ethtool -G {i} {shlex.join(args)}')
                    if r.returncode != 0:
                        _logger.warning("%s: %s: cannot set rings: %s", host, interface, r.stderr.decode().strip())
                else:
                    _logger.info("%s: %s: rings are at maximum", host, interface)
            else:
                _logger.info("%s: %s: ring parameters are not supported", host, interface)
            ssh(host, f'sudo tc qdisc replace dev {i} root {shlex.quote(self._qdisc)}')


class TuneIoAndCpu(CompositeCommand):

    def __init__(self, *, hugepages: bool, turbo: bool):
        thp = 'madvise' if hugepages else 'never'
        super().__init__([
            Write(_io_rules.read_bytes(), io_rules_path),
            Run('sudo udevadm control --reload-rules'),
            Run('sudo udevadm trigger --subsystem-match=block --action=change'),
            Write(render(_cpu_unit_template, thp=thp, turbo=turbo), cpu_unit_path),
            Run('sudo systemctl daemon-reload'),
            Run('sudo systemctl enable perf-tune-cpu.service'),
            Run('sudo systemctl restart perf-tune-cpu.service'),
            ])
        self._repr = f'{TuneIoAndCpu.__name__}(hugepages={hugepages}, turbo={turbo})'

    def __repr__(self):
        return self._repr


class SetLimits(Write):

    def __init__(self):
        super().__init__(_limits.read_bytes(), limits_path)


class DisableIpv6(CompositeCommand):

    def __init__(self):
        super().__init__([
            AddGrubCmdlineArg('ipv6.disable=1'),
            Run('sudo update-grub'),
            ])

    def __repr__(self):
        return f'{DisableIpv6.__name__}()'


def uninstall_commands() -> Sequence[Command]:
    return [
        Run('sudo systemctl disable --now perf-tune-cpu.service || true'),
        *[
            RemoveManagedFile(path)
            for path in (
                sysctl_path,
                bbr_module_path,
                arc_path,
                io_rules_path,
                cpu_unit_path,
                limits_path,
                f'/etc/ssh/sshd_config.d/{sshd_drop_in_name}',
                )],
        Run('sudo sysctl --system > /dev/null'),
        Run('sudo udevadm control --reload-rules'),
        Run('sudo systemctl daemon-reload'),
        Run('sudo sshd -t && sudo systemctl reload ssh'),
        RemoveGrubCmdlineArg('ipv6.disable=1'),
        Run('sudo update-grub'),
        ]


_bbr_module = Path(__file__).with_name('perf-tune-bbr.conf')
_arc_template = Path(__file__).with_name('zfs-arc.conf.j2')
_io_rules = Path(__file__).with_name('60-perf-tune-io.rules')
_cpu_unit_template = Path(__file__).with_name('perf-tune-cpu.service.j2')
_limits = Path(__file__).with_name('99-perf-tune-limits.conf')
_logger = logging.getLogger(__name__)
