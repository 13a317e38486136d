# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import re
from typing import Any
from typing import Callable
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple

import requests

releases_url = 'https://www.kernel.org/releases.json'
zfs_tags_url = 'https://api.github.com/repos/openzfs/zfs/tags?per_page=100'
fallback_series = '6.6'
fallback_zfs_version = '2.2.4'

_Fetch = Callable[[str], Any]


def longterm_series(releases: Mapping[str, Any]) -> str:
    """Series of the first longterm release, e.g. 6.6.

    >>> longterm_series({'releases': [
    ...     {'moniker': 'mainline', 'version': '6.12-rc3'},
    ...     {'moniker': 'stable', 'version': '6.11.3'},
    ...     {'moniker': 'longterm', 'version': '6.6.56'},
    ...     {'moniker': 'longterm', 'version': '6.1.112'},
    ...     ]})
    '6.6'
    """
    for release in releases['releases']:
        if release.get('moniker') != 'longterm':
            continue
        m = _series_re.match(release['version'])
        if m is None:
            raise VersionNotResolved(f"Unexpected longterm version {release['version']!r}")
        return m['series']
    raise VersionNotResolved("No longterm release listed")


def highest_zfs_22(tags: Sequence[Mapping[str, Any]]) -> str:
    """Highest zfs-2.2.x tag. Compared as numbers, not as text.

    >>> highest_zfs_22([{'name': 'zfs-2.3.0'}, {'name': 'zfs-2.2.9'}, {'name': 'zfs-2.2.10'}, {'name': 'zfs-2.2.6-rc1'}])
    '2.2.10'
    """
    versions = []
    for tag in tags:
        version = _zfs_version(tag.get('name', ''))
        if version is not None and version[:2] == (2, 2):
            versions.append(version)
    if not versions:
        raise VersionNotResolved("No zfs-2.2.x tag listed")
    return '.'.join(str(part) for part in max(versions))


def resolve_kernel_series(setting: str, fetch: Optional[_Fetch] = None) -> str:
    if setting != 'auto':
        return setting
    try:
        return longterm_series((fetch or _fetch_json)(releases_url))
    except (requests.RequestException, ValueError, KeyError, TypeError, VersionNotResolved) as e:
        _logger.warning("Cannot resolve the longterm kernel series, use %s: %s", fallback_series, e)
        return fallback_series


def resolve_zfs_version(setting: str, fetch: Optional[_Fetch] = None) -> str:
    if setting != 'auto':
        return setting
    try:
        return highest_zfs_22((fetch or _fetch_json)(zfs_tags_url))
    except (requests.RequestException, ValueError, KeyError, TypeError, VersionNotResolved) as e:
        _logger.warning("Cannot resolve the OpenZFS version, use %s: %s", fallback_zfs_version, e)
        return fallback_zfs_version


def _fetch_json(url: str):
    _logger.debug("GET %s", url)
    response = requests.get(url, timeout=30)
    response.raise_for_status()
    return response.json()


def _zfs_version(tag_name: str) -> Optional[Tuple[int, int, int]]:
    m = _zfs_tag_re.fullmatch(tag_name)
    if m is None:
        return None
    return int(m['major']), int(m['minor']), int(m['patch'])


class VersionNotResolved(Exception):
    pass


_series_re = re.compile(r'(?P<series>\d+\.\d+)(?:\.\d+)?$')
_zfs_tag_re = re.compile(r'zfs-(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)')
_logger = logging.getLogger(__name__)
