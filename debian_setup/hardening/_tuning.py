# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from typing import Mapping
from typing import Sequence
from typing import Tuple

GiB = 1024 ** 3


def parse_mem_total(meminfo: str) -> int:
    """Total memory in bytes from /proc/meminfo.

    >>> parse_mem_total('MemTotal:       65799460 kB\\nMemFree:         1000 kB\\n')
    67378647040
    """
    for line in meminfo.splitlines():
        key, _, value = line.partition(':')
        if key == 'MemTotal':
            [amount, unit] = value.split()
            if unit != 'kB':
                raise ValueError(f"Unexpected MemTotal unit {unit!r}")
            return int(amount) * 1024
    raise ValueError("No MemTotal in meminfo")


def arc_limits(mem_total: int, *, dynamic: bool) -> Tuple[int, int]:
    """Return ARC max and min in bytes.

    Dynamic: max is a half of RAM, min is an eighth but not less than 1 GiB.
    Min never exceeds max.

    >>> [x // GiB for x in arc_limits(64 * GiB, dynamic=True)]
    [32, 8]
    >>> [x // GiB for x in arc_limits(4 * GiB, dynamic=True)]
    [2, 1]
    >>> [x // GiB for x in arc_limits(64 * GiB, dynamic=False)]
    [8, 1]
    """
    if not dynamic:
        return 8 * GiB, 1 * GiB
    arc_max = mem_total // 2
    arc_min = max(mem_total // 8, 1 * GiB)
    return arc_max, min(arc_min, arc_max)


def parse_ring_params(ethtool_output: str) -> Tuple[Mapping[str, int], Mapping[str, int]]:
    """Pre-set maximums and current settings from ethtool -g.

    Values like n/a are skipped.
    """
    maxima = {}
    current = {}
    section = None
    for line in ethtool_output.splitlines():
        stripped = line.strip()
        if stripped.lower().startswith('pre-set maximums'):
            section = maxima
            continue
        if stripped.lower().startswith('current hardware settings'):
            section = current
            continue
        if section is None:
            continue
        key, colon, value = stripped.partition(':')
        value = value.strip()
        if colon and value.isdigit():
            section[key.strip()] = int(value)
    return maxima, current


def ring_arguments(maxima: Mapping[str, int], current: Mapping[str, int]) -> Sequence[str]:
    """Arguments for ethtool -G to raise RX and TX rings to maximums.

    >>> ring_arguments({'RX': 4096, 'TX': 4096}, {'RX': 256, 'TX': 4096})
    ['rx', '4096']
    >>> ring_arguments({'RX': 0}, {'RX': 0})
    []
    """
    args = []
    for key in ('RX', 'TX'):
        maximum = maxima.get(key, 0)
        if maximum > 0 and current.get(key, 0) < maximum:
            args.extend([key.lower(), str(maximum)])
    return args


def parse_lines(output: str) -> Sequence[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]
