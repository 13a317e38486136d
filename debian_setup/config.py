# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import fnmatch
import logging
import socket
from configparser import ConfigParser
from pathlib import Path
from typing import Mapping
from typing import Sequence

_logger = logging.getLogger(__name__)


def _read_config(*paths: Path, host: str = '') -> Mapping[str, str]:
    """Read and resolve overrides according to versions.

    Optionally add ";v123" to sections like "[db-??;v45]".
    If not specified, "v0" is assumed.
    Higher versions override lower versions.
    Sections are matched against the hostname of the admin machine.

    An operator's own file can override the packaged defaults.
    New packaged values can override an operator's file written for older ones.
    """
    host = host or socket.gethostname()
    config_parts = []
    for path_i, path in enumerate(paths):
        config_parser = ConfigParser(interpolation=None)
        config_parser.read(path)
        sections = config_parser.sections()
        for section_i, section in enumerate(sections):
            mask, version = _parse_section_header(section)
            if fnmatch.fnmatch(host, mask):
                _logger.debug("Config %s: section %s: read", path, section)
                items = config_parser.items(section)
                config_parts.append((version, path_i, section_i, items))
            else:
                _logger.debug("Config %s: section %s: skip", path, section)
    config_parts.sort(key=lambda part: part[:3])
    config = {}
    for _version, _path_i, _section_i, items in config_parts:
        config.update(items)
    return config


def _parse_section_header(section):
    """Split a section name to a host mask and a version.

    >>> _parse_section_header('defaults')
    ('*', 0)
    >>> _parse_section_header('db-*;v3')
    ('db-*', 3)
    >>> _parse_section_header('db-*;x') # doctest: +IGNORE_EXCEPTION_DETAIL
    Traceback (most recent call last):
    ...
    ValueError: Unknown x in db-*;x
    """
    if section == 'defaults':
        return '*', 0
    else:
        mask, semicolon, extra = section.partition(';')
        if not extra:
            return mask, 0
        elif extra.startswith('v'):
            try:
                return mask, int(extra[1:])
            except ValueError:
                raise ValueError(f"Cannot parse {extra} in {section}")
        else:
            raise ValueError(f"Unknown {extra} in {section}")


def split_list(value: str) -> Sequence[str]:
    """Parse a comma- or newline-separated config value.

    >>> split_list('192.168.1.223, 192.168.1.224,\\n# 192.168.1.225\\n')
    ['192.168.1.223', '192.168.1.224']
    """
    result = []
    for line in value.splitlines():
        line = line.split('#', 1)[0]
        result.extend(item.strip() for item in line.split(',') if item.strip())
    return result


global_config = _read_config(
    Path(__file__).with_name('config.ini'),
    Path('~/.config/debian_setup.ini').expanduser(),
    )

if __name__ == '__main__':
    for k, v in global_config.items():
        print(k + '=' + v)
