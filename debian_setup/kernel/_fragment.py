# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from pathlib import Path
from typing import Dict

hardened_fragment = Path(__file__).with_name('hardened.config')


def parse_fragment(text: str) -> Dict[str, str]:
    """Symbol values of a Kconfig fragment. The last assignment wins.

    "# CONFIG_X is not set" is the same as CONFIG_X=n. Other comments are
    ignored. Lines that are neither are dropped.

    >>> parse_fragment('''
    ... # ===== Security =====
    ... CONFIG_SECCOMP=y
    ... # CONFIG_AUDIT is not set
    ... CONFIG_AUDIT=y
    ... CONFIG_DEFAULT_HOSTNAME="r720"
    ... CONFIG_X is not set
    ... CONFIG_AUDIT=n
    ... ''')
    {'SECCOMP': 'y', 'AUDIT': 'n', 'DEFAULT_HOSTNAME': '"r720"'}
    """
    symbols = {}
    for line_number, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line:
            continue
        unset = _unset_re.fullmatch(line)
        if unset is not None:
            symbols[unset['name']] = 'n'
            continue
        if line.startswith('#'):
            continue
        assignment = _assignment_re.fullmatch(line)
        if assignment is None:
            _logger.warning("Fragment line %d dropped: %r", line_number, line)
            continue
        symbols[assignment['name']] = assignment['value']
    return symbols


def render_fragment(symbols: Dict[str, str]) -> str:
    """Fragment in the form merge_config.sh expects.

    >>> print(render_fragment({'SECCOMP': 'y', 'AUDIT': 'n', 'TG3': 'm'}), end='')
    CONFIG_SECCOMP=y
    # CONFIG_AUDIT is not set
    CONFIG_TG3=m
    """
    lines = []
    for name, value in symbols.items():
        if value == 'n':
            lines.append(f'# CONFIG_{name} is not set')
        else:
            lines.append(f'CONFIG_{name}={value}')
    return '\n'.join(lines) + '\n'


def clean_fragment(text: str) -> str:
    return render_fragment(parse_fragment(text))


_unset_re = re.compile(r'#\s*CONFIG_(?P<name>[A-Za-z0-9_]+) is not set')
_assignment_re = re.compile(r'CONFIG_(?P<name>[A-Za-z0-9_]+)=(?P<value>\S.*)')
_logger = logging.getLogger(__name__)
