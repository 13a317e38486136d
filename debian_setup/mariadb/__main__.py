# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import logging
import sys
from datetime import datetime
from typing import Sequence

from debian_setup._core import Command
from debian_setup._core import Fleet
from debian_setup._known_hosts import AddOtherToOurKnownHosts
from debian_setup._logging import init_logging
from debian_setup._prompts import UserAborted
from debian_setup._prompts import ask
from debian_setup._prompts import ask_secret
from debian_setup._prompts import choose
from debian_setup._prompts import confirm
from debian_setup.config import global_config
from debian_setup.mariadb import _sql
from debian_setup.mariadb._cluster import Cluster
from debian_setup.mariadb._cluster import Role
from debian_setup.mariadb._commands import CaptureGtid
from debian_setup.mariadb._commands import ConfigureNode
from debian_setup.mariadb._commands import CopyBackup
from debian_setup.mariadb._commands import GtidPosition
from debian_setup.mariadb._commands import RestoreBackup
from debian_setup.mariadb._commands import ShowReplicationStatus
from debian_setup.mariadb._commands import Sql
from debian_setup.mariadb._commands import StartReplication
from debian_setup.mariadb._commands import TakeBackup
from debian_setup.mariadb._commands import WaitForReplicaSync
from debian_setup.mariadb._commands import fence_timeout


class Operator:
    """Answers to the questions the actions ask."""

    def ask(self, prompt: str) -> str:
        return ask(prompt)

    def ask_secret(self, prompt: str) -> str:
        return ask_secret(prompt)

    def choose(self, prompt: str, options: Sequence[str]) -> str:
        return choose(prompt, options)

    def confirm(self, prompt: str) -> bool:
        return confirm(prompt)


def run_on(hosts: Sequence[str], commands: Sequence[Command]):
    Fleet(hosts).run(commands)


def setup_node(cluster: Cluster, operator: Operator, run=run_on):
    ip = operator.ask("Enter IP of the node to set up")
    role = Role.parse(operator.ask("Enter role for this node (Primary/Replica)"))
    _logger.info("Configuring node %s as a %s", ip, role)
    run([cluster.ssh_host(ip)], [ConfigureNode(cluster, ip, role)])
    _logger.info("Node %s successfully configured as a %s", ip, role)


def seed_replica(cluster: Cluster, operator: Operator, run=run_on):
    replica = operator.choose("Please choose a target replica", cluster.replicas)
    _logger.info("Seeding replica %s from primary %s", replica, cluster.primary)
    password = operator.ask_secret(f"Enter the password for the {cluster.repl_user!r} replication user")
    if not operator.confirm(f"All data on {replica} will be replaced. Continue?"):
        raise UserAborted()
    backup_dir = f'{cluster.backup_base_dir}/backup-{datetime.now():%Y-%m-%d_%H-%M}'
    position = GtidPosition()
    run([cluster.ssh_host(cluster.primary)], [
        Sql(_sql.create_replication_user(cluster.repl_user, password), secrets=[password]),
        TakeBackup(backup_dir),
        CaptureGtid(backup_dir, position),
        AddOtherToOurKnownHosts('root', replica, cluster.ssh_user),
        CopyBackup(backup_dir, cluster.ssh_host(replica), cluster.backup_base_dir),
        ])
    run([cluster.ssh_host(replica)], [
        RestoreBackup(cluster, backup_dir),
        StartReplication(cluster.primary, cluster.repl_user, password, position),
        ShowReplicationStatus(),
        ])
    _logger.info("Replica seed process complete for %s", replica)


def re_auth(cluster: Cluster, operator: Operator, run=run_on):
    password = operator.ask_secret(f"Enter the NEW password for the {cluster.repl_user!r} user")
    run([cluster.ssh_host(cluster.primary)], [
        Sql(_sql.create_replication_user(cluster.repl_user, password), secrets=[password]),
        ])
    _logger.info("Password updated on primary")
    if cluster.replicas:
        run(
            [cluster.ssh_host(ip) for ip in cluster.replicas],
            [Sql(_sql.change_master_password(password), secrets=[password])])
    _logger.info("Credential rotation complete for all replicas")


def switchover(cluster: Cluster, operator: Operator, run=run_on):
    if len(cluster.replicas) != 1:
        raise SwitchoverNotSupported(
            "Switchover is designed for a primary with a single replica, "
            f"configured replicas: {cluster.replicas}")
    [replica] = cluster.replicas
    password = operator.ask_secret(f"Enter the password for the {cluster.repl_user!r} replication user")
    _logger.warning(
        "Live role switchover: %s becomes primary, %s becomes replica", replica, cluster.primary)
    if not operator.confirm("Are you sure you want to continue?"):
        raise UserAborted()
    old_primary = [cluster.ssh_host(cluster.primary)]
    new_primary = [cluster.ssh_host(replica)]
    run(new_primary, [WaitForReplicaSync()])
    run(old_primary, [Sql(_sql.fence_writes(), timeout=fence_timeout)])
    _logger.info("Old primary %s is now read-only", cluster.primary)
    run(new_primary, [Sql(_sql.promote())])
    _logger.warning("New primary is live. Point your applications to %s now", replica)
    run(old_primary, [
        Sql(_sql.demote(replica, cluster.repl_user, password), secrets=[password]),
        ShowReplicationStatus(),
        ])
    _logger.warning(
        "Switchover complete. Roles are reversed: "
        "set mariadb_primary = %s and mariadb_replicas = %s in ~/.config/debian_setup.ini",
        replica, cluster.primary)


_actions = {
    'setup-node': setup_node,
    'seed-replica': seed_replica,
    're-auth': re_auth,
    'switchover': switchover,
    }


def perform(action: str, cluster: Cluster, operator: Operator, run=run_on) -> int:
    try:
        _actions[action](cluster, operator, run)
    except UserAborted:
        _logger.info("Aborting.")
    return 0


def main(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m debian_setup.mariadb',
        description="MariaDB primary/replica cluster controller.",
        epilog=(
            "setup-node: configure a node as Primary or Replica; "
            "seed-replica: wipe a chosen replica and seed it with a fresh backup of the primary; "
            "re-auth: rotate the replication password on the primary and all replicas; "
            "switchover: promote the replica to primary (single-replica setups only)"),
        )
    parser.add_argument('--action', required=True, choices=sorted(_actions))
    parsed_args = parser.parse_args(args)
    cluster = Cluster.from_config(global_config)
    _logger.info("Cluster: %r", cluster)
    return perform(parsed_args.action, cluster, Operator())


class SwitchoverNotSupported(Exception):
    pass


_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    init_logging('mariadb')
    exit(main(sys.argv[1:]))
