# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from typing import List
from typing import Sequence

BIOS_PARTITION = 1
EFI_PARTITION = 2
BPOOL_PARTITION = 3
RPOOL_PARTITION = 4

layouts = ['mirror', 'raid10', 'raidz1', 'raidz2', 'raidz3']


class Disk:

    def __init__(self, name: str, size: str = '', model: str = ''):
        self.name = name
        self.size = size
        self.model = model

    @property
    def path(self) -> str:
        return f'/dev/{self.name}'

    def __repr__(self):
        return f'{Disk.__name__}({self.name!r})'

    def __str__(self):
        return ' '.join(field for field in (self.name, self.size, self.model) if field)

    def __eq__(self, other):
        return isinstance(other, Disk) and self.name == other.name

    def __hash__(self):
        return hash(self.name)


def parse_lsblk(output: str) -> List[Disk]:
    """Disks from lsblk -ndo NAME,SIZE,TYPE,MODEL. Loops and optical drives are skipped.

    >>> parse_lsblk('loop0 2.4G loop\\nsda 931.5G disk WDC WD10EZEX\\nsr0 1024M rom QEMU DVD\\nnvme0n1 1.8T disk\\n')
    [Disk('sda'), Disk('nvme0n1')]
    """
    disks = []
    for line in output.splitlines():
        fields = line.split(maxsplit=3)
        if len(fields) < 3:
            continue
        [name, size, kind, *model] = fields
        if kind != 'disk' or name.startswith(('loop', 'sr')):
            continue
        disks.append(Disk(name, size, model[0] if model else ''))
    return disks


def parse_fallback_names(output: str) -> List[Disk]:
    """Plain sd/hd/vd names from lsblk -ndo NAME.

    >>> parse_fallback_names('sda\\nsdb1\\nvdc\\nloop0\\n')
    [Disk('sda'), Disk('vdc')]
    """
    return [Disk(line.strip()) for line in output.splitlines() if _simple_disk_re.fullmatch(line.strip())]


def partition(disk: Disk, number: int) -> str:
    """Partition device. Names ending in a digit get a "p" separator.

    >>> partition(Disk('sda'), 3), partition(Disk('nvme0n1'), 3), partition(Disk('mmcblk0'), 1)
    ('/dev/sda3', '/dev/nvme0n1p3', '/dev/mmcblk0p1')
    """
    separator = 'p' if disk.name[-1:].isdigit() else ''
    return f'{disk.path}{separator}{number}'


def vdev_layout(disks: Sequence[Disk], number: int, layout: str) -> List[str]:
    """Arguments that follow the pool name in zpool create.

    >>> vdev_layout([Disk('sda')], 4, 'mirror')
    ['/dev/sda4']
    >>> vdev_layout([Disk('sda'), Disk('sdb')], 3, 'raidz2')
    ['raidz2', '/dev/sda3', '/dev/sdb3']
    >>> vdev_layout([Disk('sda'), Disk('sdb'), Disk('sdc'), Disk('sdd')], 4, 'raid10')
    ['mirror', '/dev/sda4', '/dev/sdb4', 'mirror', '/dev/sdc4', '/dev/sdd4']
    """
    parts = [partition(disk, number) for disk in disks]
    if len(parts) == 1:
        return parts
    if layout == 'raid10':
        if len(parts) % 2 != 0:
            _logger.warning("RAID10 works best with an even number of disks")
        result = []
        for i in range(0, len(parts), 2):
            pair = parts[i:i + 2]
            if len(pair) == 2:
                result.extend(['mirror', *pair])
            else:
                _logger.warning("%s is a single disk vdev in RAID10, this is not ideal", pair[0])
                result.extend(pair)
        return result
    if layout not in layouts:
        raise ValueError(f"Unknown layout {layout!r}")
    return [layout, *parts]


def layout_from_answer(answer: str) -> str:
    """Map a 1-based menu answer. Anything else is a mirror.

    >>> layout_from_answer('2'), layout_from_answer('5'), layout_from_answer('9')
    ('raid10', 'raidz3', 'mirror')
    """
    answer = answer.strip()
    if answer.isdigit() and 1 <= int(answer) <= len(layouts):
        return layouts[int(answer) - 1]
    _logger.warning("Invalid RAID choice %r. Defaulting to simple mirror", answer)
    return 'mirror'


class NoDisksFound(Exception):
    pass


_simple_disk_re = re.compile(r'[shv]d[a-z]')
_logger = logging.getLogger(__name__)
