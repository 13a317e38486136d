# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from pathlib import Path

from jinja2 import Environment
from jinja2 import FileSystemLoader
from jinja2 import StrictUndefined


def render(template_path: Path, **context) -> str:
    """Render a template stored beside the code that uses it.

    Missing variables are errors: a half-rendered config file on a server
    is worse than no file.
    """
    return _environment(template_path.parent).get_template(template_path.name).render(**context)


def _environment(directory: Path) -> Environment:
    try:
        return _environments[directory]
    except KeyError:
        environment = Environment(
            loader=FileSystemLoader(str(directory)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
            )
        _environments[directory] = environment
        return environment


_environments = {}
