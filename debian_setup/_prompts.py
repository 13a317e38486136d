# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Interactive questions asked by wizards before commands are composed.

Confirmation of individual commands is the fleet's job.
These are for the choices that determine what commands are.
"""
import getpass
import logging
from typing import Optional
from typing import Sequence
from typing import TypeVar

_T = TypeVar('_T')


def choose(prompt: str, options: Sequence[_T]) -> _T:
    if not options:
        raise NothingSelected(f"{prompt}: nothing to choose from")
    _print_options(options)
    while True:
        answer = input(f"{prompt} [1-{len(options)}]: ").strip()
        index = _parse_index(answer, len(options))
        if index is not None:
            return options[index]
        print("Invalid selection.", flush=True)


def choose_many(prompt: str, options: Sequence[_T]) -> Sequence[_T]:
    """Pick several options by numbers separated by spaces.

    Invalid numbers are reported and ignored. Order of the answer is kept.
    """
    if not options:
        raise NothingSelected(f"{prompt}: nothing to choose from")
    _print_options(options)
    answer = input(f"{prompt} (e.g. 1 3): ")
    selected = []
    for word in answer.split():
        index = _parse_index(word, len(options))
        if index is None:
            _logger.warning("Number %r is not valid and will be ignored", word)
        elif options[index] not in selected:
            selected.append(options[index])
    if not selected:
        raise NothingSelected(f"{prompt}: nothing selected")
    return selected


def confirm(prompt: str) -> bool:
    answer = input(f"{prompt} [y/N]: ")
    return answer.strip().lower() in ('y', 'yes')


def ask(prompt: str, *, default: Optional[str] = None) -> str:
    suffix = f" [{default}]" if default is not None else ""
    while True:
        answer = input(f"{prompt}{suffix}: ").strip()
        if answer:
            return answer
        if default is not None:
            return default


def ask_secret(prompt: str) -> str:
    secret = getpass.getpass(f"{prompt}: ")
    if not secret:
        raise EmptySecret(f"{prompt}: must not be empty")
    return secret


def _print_options(options):
    for number, option in enumerate(options, 1):
        print(f"{number}) {option}")


def _parse_index(answer: str, count: int) -> Optional[int]:
    """Convert a 1-based answer to an index.

    >>> _parse_index('2', 3)
    1
    >>> [_parse_index(a, 3) for a in ('0', '4', 'x', '')]
    [None, None, None, None]
    """
    if not answer.isdigit():
        return None
    number = int(answer)
    if not 1 <= number <= count:
        return None
    return number - 1


class NothingSelected(Exception):
    pass


class EmptySecret(Exception):
    pass


class UserAborted(Exception):
    pass


_logger = logging.getLogger(__name__)
