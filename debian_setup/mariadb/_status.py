# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
import time
from typing import Callable
from typing import Mapping
from typing import Optional


def parse_vertical(text: str) -> Mapping[str, str]:
    r"""Parse output of a statement terminated with \G.

    >>> status = parse_vertical('''*************************** 1. row ***************************
    ...                 Slave_IO_State: Waiting for master to send event
    ...                    Master_Host: 192.168.1.221
    ...               Slave_IO_Running: Yes
    ...          Seconds_Behind_Master: 0
    ... ''')
    >>> status['Slave_IO_State'], status['Seconds_Behind_Master']
    ('Waiting for master to send event', '0')
    """
    result = {}
    for line in text.splitlines():
        if _row_header_re.fullmatch(line.strip()):
            continue
        key, colon, value = line.partition(':')
        if not colon:
            continue
        result[key.strip()] = value.strip()
    return result


def seconds_behind(status: Mapping[str, str]) -> Optional[int]:
    """Lag in seconds or None if unknown (replication stopped or not configured).

    >>> seconds_behind({'Seconds_Behind_Master': '12'})
    12
    >>> seconds_behind({'Seconds_Behind_Master': 'NULL'}) is None
    True
    >>> seconds_behind({}) is None
    True
    """
    value = status.get('Seconds_Behind_Master', '')
    if not value.isdigit():
        return None
    return int(value)


def is_replicating(status: Mapping[str, str]) -> bool:
    return status.get('Slave_IO_Running') == 'Yes' and status.get('Slave_SQL_Running') == 'Yes'


def parse_binlog_info(text: str) -> str:
    """Take the GTID position from mariadb_backup_binlog_info.

    The file holds binlog name, offset and GTID separated by whitespace.

    >>> parse_binlog_info('binlog.000012\\t385\\t0-1221-4057\\n')
    '0-1221-4057'
    >>> parse_binlog_info('binlog.000012 385 0-1221-4057,1-1223-7\\n')
    '0-1221-4057,1-1223-7'
    >>> parse_binlog_info('binlog.000012 385') # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    MalformedBinlogInfo: ...
    """
    fields = text.split()
    if len(fields) < 3:
        raise MalformedBinlogInfo(f"Expected binlog name, offset and GTID, got {text!r}")
    gtid = fields[2]
    if not _gtid_list_re.fullmatch(gtid):
        raise MalformedBinlogInfo(f"Not a GTID position: {gtid!r}")
    return gtid


def wait_for_sync(
        read_status: Callable[[], Mapping[str, str]],
        *,
        attempts: int = 60,
        interval_sec: float = 1,
        sleep: Callable[[float], None] = time.sleep,
        ):
    """Poll until the replica reports zero lag."""
    behind = None
    for attempt in range(attempts):
        behind = seconds_behind(read_status())
        if behind == 0:
            _logger.info("Replica is fully synchronized")
            return
        if behind is None:
            _logger.info("Replica lag is unknown. Waiting...")
        else:
            _logger.info("Replica is %d seconds behind master. Waiting...", behind)
        if attempt + 1 < attempts:
            sleep(interval_sec)
    raise ReplicaDidNotCatchUp(
        f"Replica did not catch up after {attempts} attempts, last lag: {behind}")


_row_header_re = re.compile(r'\*+ \d+\. row \*+')
_gtid_list_re = re.compile(r'\d+-\d+-\d+(,\d+-\d+-\d+)*')


class MalformedBinlogInfo(Exception):
    pass


class ReplicaDidNotCatchUp(Exception):
    pass


_logger = logging.getLogger(__name__)
