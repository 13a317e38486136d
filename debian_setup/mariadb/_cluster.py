# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import ipaddress
from typing import Mapping
from typing import Sequence

from debian_setup.config import split_list


class Cluster:

    def __init__(
            self,
            primary: str,
            replicas: Sequence[str],
            *,
            ssh_user: str = 'root',
            repl_user: str = 'repl',
            zfs_device: str = '/dev/nvme0n1',
            zfs_pool: str = 'mariadb_data',
            base_dir: str = '/var/lib/mysql',
            mariadb_version: str = '11.4',
            ):
        self.primary = primary
        self.replicas = list(replicas)
        self.ssh_user = ssh_user
        self.repl_user = repl_user
        self.zfs_device = zfs_device
        self.zfs_pool = zfs_pool
        self.base_dir = base_dir.rstrip('/')
        self.mariadb_version = mariadb_version

    @classmethod
    def from_config(cls, config: Mapping[str, str]) -> 'Cluster':
        return cls(
            config['mariadb_primary'],
            split_list(config.get('mariadb_replicas', '')),
            ssh_user=config.get('mariadb_ssh_user', 'root'),
            repl_user=config.get('mariadb_repl_user', 'repl'),
            zfs_device=config.get('mariadb_zfs_device', '/dev/nvme0n1'),
            zfs_pool=config.get('mariadb_zfs_pool', 'mariadb_data'),
            base_dir=config.get('mariadb_base_dir', '/var/lib/mysql'),
            mariadb_version=config.get('mariadb_version', '11.4'),
            )

    @property
    def backup_base_dir(self) -> str:
        return f'{self.base_dir}/backups'

    def ssh_host(self, ip: str) -> str:
        return f'{self.ssh_user}@{ip}'

    def __repr__(self):
        return f'{Cluster.__name__}({self.primary!r}, {self.replicas!r})'


class Role:
    PRIMARY = 'Primary'
    REPLICA = 'Replica'

    @classmethod
    def parse(cls, value: str) -> str:
        """Accept a role name in any case.

        >>> Role.parse('replica')
        'Replica'
        >>> Role.parse('master') # doctest: +IGNORE_EXCEPTION_DETAIL
        Traceback (most recent call last):
        ...
        UnknownRole: 'master'
        """
        for role in (cls.PRIMARY, cls.REPLICA):
            if value.strip().lower() == role.lower():
                return role
        raise UnknownRole(repr(value))


def server_id(ip: str) -> int:
    """Derive a unique server-id from the last two octets.

    >>> server_id('192.168.1.221')
    1221
    >>> server_id('10.0.12.5')
    12005
    """
    octets = ipaddress.IPv4Address(ip).packed
    return int(f'{octets[2]:d}{octets[3]:03d}')


def bind_address(ip: str, role: str) -> str:
    """Replicas listen on loopback only."""
    if role == Role.REPLICA:
        return '127.0.0.1'
    return ip


class UnknownRole(Exception):
    pass
