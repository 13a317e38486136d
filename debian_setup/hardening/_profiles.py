# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from pathlib import Path
from typing import Mapping

from debian_setup._templates import render


class Profile:

    def __init__(self, name: str, tcp_cc: str, qdisc: str, settings: Mapping[str, str]):
        self.name = name
        self.tcp_cc = tcp_cc
        self.qdisc = qdisc
        self.settings = dict(settings)

    def __repr__(self):
        return f'{Profile.__name__}({self.name!r}, {self.tcp_cc!r}, {self.qdisc!r})'

    def needs_bbr(self) -> bool:
        return self.tcp_cc == 'bbr'


profiles = {
    'auto': Profile('auto', 'bbr', 'fq', {
        'net.core.netdev_max_backlog': '32768',
        'net.core.somaxconn': '16384',
        'net.ipv4.tcp_mtu_probing': '1',
        }),
    'lan_low_latency': Profile('lan_low_latency', 'cubic', 'fq_codel', {
        'net.ipv4.tcp_low_latency': '1',
        'net.ipv4.tcp_wmem': '4096 16384 4194304',
        'net.ipv4.tcp_rmem': '4096 87380 6291456',
        'net.core.netdev_max_backlog': '16384',
        'net.core.somaxconn': '8192',
        }),
    'wan_throughput': Profile('wan_throughput', 'bbr', 'fq', {
        'net.core.rmem_max': '16777216',
        'net.core.wmem_max': '16777216',
        'net.ipv4.tcp_rmem': '4096 131072 16777216',
        'net.ipv4.tcp_wmem': '4096 16384 16777216',
        'net.ipv4.tcp_mtu_probing': '1',
        'net.core.netdev_max_backlog': '32768',
        'net.core.somaxconn': '16384',
        }),
    'datacenter_10g': Profile('datacenter_10g', 'bbr', 'fq', {
        'net.core.rmem_max': '33554432',
        'net.core.wmem_max': '33554432',
        'net.ipv4.tcp_rmem': '4096 262144 33554432',
        'net.ipv4.tcp_wmem': '4096 32768 33554432',
        'net.core.netdev_max_backlog': '65536',
        'net.core.somaxconn': '65536',
        'net.ipv4.tcp_timestamps': '1',
        'net.ipv4.tcp_fastopen': '3',
        }),
    }


def render_sysctl(profile: Profile) -> str:
    return render(_sysctl_template, profile=profile)


_sysctl_template = Path(__file__).with_name('99-perf-tune.conf.j2')
