# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import shlex
from pathlib import Path
from typing import Optional
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import CompositeCommand
from debian_setup._core import Run
from debian_setup._core import Write
from debian_setup._ssh import ssh
from debian_setup._ssh import ssh_input
from debian_setup._ssh import ssh_still
from debian_setup._templates import render
from debian_setup.mariadb import _sql
from debian_setup.mariadb._cluster import Cluster
from debian_setup.mariadb._cluster import bind_address
from debian_setup.mariadb._cluster import server_id
from debian_setup.mariadb._status import is_replicating
from debian_setup.mariadb._status import parse_binlog_info
from debian_setup.mariadb._status import parse_vertical
from debian_setup.mariadb._status import wait_for_sync


class Sql(Command):
    """Feed statements to the local mariadb client of the host."""

    def __init__(self, sql: str, *, secrets: Sequence[str] = (), timeout: float = 60):
        self._sql = sql
        self._secrets = [s for s in secrets if s]
        self._timeout = timeout

    def __repr__(self):
        text = self._sql
        for secret in self._secrets:
            text = text.replace(_sql.literal(secret), "'***'")
        return f'{Sql.__name__}({" ".join(text.split())!r})'

    def run(self, host):
        ssh_input(host, 'sudo mariadb', self._sql.encode('utf8'), timeout=self._timeout)


class ServerConfig(Write):

    def __init__(self, cluster: Cluster, ip: str, role: str):
        content = render_server_config(cluster, ip, role)
        super().__init__(content, '/etc/mysql/mariadb.conf.d/50-server.cnf')


def render_server_config(cluster: Cluster, ip: str, role: str) -> str:
    return render(
        _template,
        role=role,
        server_id=server_id(ip),
        bind_address=bind_address(ip, role),
        base_dir=cluster.base_dir,
        )


class ConfigureNode(CompositeCommand):

    def __init__(self, cluster: Cluster, ip: str, role: str):
        pool = shlex.quote(cluster.zfs_pool)
        device = shlex.quote(cluster.zfs_device)
        base = shlex.quote(cluster.base_dir)
        version = shlex.quote(f'mariadb-{cluster.mariadb_version}')
        super().__init__([
            Run(f'sudo zpool list {pool} > /dev/null 2>&1 || sudo zpool create -f {pool} {device}'),
            Run(f'sudo zfs set mountpoint={base} {pool}'),
            Run(f'sudo zfs set compression=lz4 atime=off logbias=throughput {pool}'),
            Run(
                f'sudo zfs list {pool}/data > /dev/null 2>&1 || '
                f'sudo zfs create -o mountpoint={base}/data -o recordsize=16k -o primarycache=metadata {pool}/data'),
            Run(
                f'sudo zfs list {pool}/log > /dev/null 2>&1 || '
                f'sudo zfs create -o mountpoint={base}/log {pool}/log'),
            Run('sudo apt-get update'),
            Run('sudo DEBIAN_FRONTEND=noninteractive apt-get install -y curl'),
            Run(
                'curl -fsSL -o /tmp/mariadb_repo_setup https://downloads.mariadb.com/MariaDB/mariadb_repo_setup'
                f' && sudo bash /tmp/mariadb_repo_setup --mariadb-server-version={version}'),
            Run('sudo DEBIAN_FRONTEND=noninteractive apt-get install -y mariadb-server mariadb-backup'),
            Run('sudo systemctl stop mariadb'),
            ServerConfig(cluster, ip, role),
            Run(
                f'test -d {base}/data/mysql || '
                f'sudo mariadb-install-db --user=mysql --datadir={base}/data'),
            Run(f'sudo chown -R mysql:mysql {base}'),
            Run('sudo systemctl start mariadb'),
            ])
        self._repr = f'{ConfigureNode.__name__}({ip!r}, {role!r})'

    def __repr__(self):
        return self._repr


class TakeBackup(CompositeCommand):

    def __init__(self, backup_dir: str):
        d = shlex.quote(backup_dir)
        super().__init__([
            Run(f'sudo mkdir -p {d}'),
            Run(f'sudo mariabackup --backup --target-dir={d} --parallel=4', timeout=data_timeout),
            Run(f'sudo mariabackup --prepare --target-dir={d}', timeout=data_timeout),
            ])
        self._repr = f'{TakeBackup.__name__}({backup_dir!r})'

    def __repr__(self):
        return self._repr


class GtidPosition:
    """Position captured on the primary and applied on a replica later.

    Commands run on different hosts, one after another.
    This is the only value passed between them.
    """

    def __init__(self):
        self._value: Optional[str] = None

    def set(self, value: str):
        self._value = value

    def get(self) -> str:
        if self._value is None:
            raise RuntimeError("GTID position is not captured yet")
        return self._value


class CaptureGtid(Command):

    def __init__(self, backup_dir: str, position: GtidPosition):
        self._backup_dir = backup_dir
        self._position = position

    def __repr__(self):
        return f'{CaptureGtid.__name__}({self._backup_dir!r})'

    def run(self, host):
        path = shlex.quote(f'{self._backup_dir}/mariadb_backup_binlog_info')
        process = ssh(host, f'sudo cat {path}')
        gtid = parse_binlog_info(process.stdout.decode('utf8'))
        self._position.set(gtid)
        _logger.info("%s: captured GTID position for seeding: %s", host, gtid)


class CopyBackup(Run):
    """Push the backup from the host it runs on to a replica."""

    def __init__(self, backup_dir: str, target: str, target_dir: str):
        super().__init__(' '.join([
            'sudo rsync -au --info=progress2',
            '-e', shlex.quote('ssh -oBatchMode=yes'),
            shlex.quote(backup_dir),
            shlex.quote(f'{target}:{target_dir}/'),
            ]), timeout=data_timeout)


class RestoreBackup(CompositeCommand):

    def __init__(self, cluster: Cluster, backup_dir: str):
        base = shlex.quote(cluster.base_dir)
        d = shlex.quote(backup_dir)
        super().__init__([
            Run('sudo systemctl stop mariadb'),
            Run(f'sudo find {base}/data {base}/log -mindepth 1 -delete', timeout=data_timeout),
            Run(f'sudo mariabackup --copy-back --target-dir={d}', timeout=data_timeout),
            Run(f'sudo chown -R mysql:mysql {base}', timeout=data_timeout),
            Run('sudo systemctl start mariadb'),
            ])
        self._repr = f'{RestoreBackup.__name__}({backup_dir!r})'

    def __repr__(self):
        return self._repr


class StartReplication(Command):

    def __init__(self, primary: str, user: str, password: str, position: GtidPosition):
        self._primary = primary
        self._user = user
        self._password = password
        self._position = position

    def __repr__(self):
        return f'{StartReplication.__name__}({self._primary!r}, {self._user!r})'

    def run(self, host):
        gtid = self._position.get()
        sql = _sql.start_replication(self._primary, self._user, self._password, gtid)
        Sql(sql, secrets=[self._password]).run(host)
        _logger.info("%s: replication from %s started at %s", host, self._primary, gtid)


class ShowReplicationStatus(Command):

    def __repr__(self):
        return f'{ShowReplicationStatus.__name__}()'

    def run(self, host):
        status = read_replication_status(host)
        for key in ('Master_Host', 'Slave_IO_Running', 'Slave_SQL_Running', 'Gtid_IO_Pos', 'Seconds_Behind_Master', 'Last_Error'):
            _logger.info("%s: %s: %s", host, key, status.get(key, ''))
        if is_replicating(status):
            _logger.info("%s: replication is running (Yes/Yes)", host)
        else:
            _logger.warning(
                "%s: replication is not running: IO=%s SQL=%s",
                host, status.get('Slave_IO_Running'), status.get('Slave_SQL_Running'))


class WaitForReplicaSync(Command):

    def __init__(self, attempts: int = 60, interval_sec: float = 1):
        self._attempts = attempts
        self._interval_sec = interval_sec

    def __repr__(self):
        return f'{WaitForReplicaSync.__name__}(attempts={self._attempts}, interval_sec={self._interval_sec})'

    def run(self, host):
        wait_for_sync(
            lambda: read_replication_status(host),
            attempts=self._attempts,
            interval_sec=self._interval_sec,
            )


def read_replication_status(host: str):
    r = ssh_still(host, 'sudo mariadb -e ' + shlex.quote(r'SHOW SLAVE STATUS\G'))
    if r.returncode != 0:
        _logger.warning("%s: cannot read replication status: %s", host, r.stderr.decode(errors='replace'))
        return {}
    return parse_vertical(r.stdout.decode('utf8'))


# Backups, transfers and restores scale with the database size.
data_timeout = 8 * 3600
# Write fence waits for running queries and open transactions.
fence_timeout = 3600

_template = Path(__file__).with_name('50-server.cnf.j2')
_logger = logging.getLogger(__name__)
