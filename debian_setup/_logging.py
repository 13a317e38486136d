# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import logging.handlers
from pathlib import Path


def init_logging(name: str):
    logging.getLogger().setLevel(logging.DEBUG)
    _init_file_logging(name + '.log')
    _init_stream_logging()


def _init_file_logging(log_file_name: str):
    log_dir = Path('~/.cache/debian_setup_logs').expanduser()
    log_dir.mkdir(exist_ok=True, parents=True)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / log_file_name, maxBytes=200 * 1024**2, backupCount=6)
    file_handler.setFormatter(logging.Formatter('%(asctime)s %(name)s %(levelname)s %(message)s'))
    file_handler.setLevel(logging.DEBUG)
    logging.getLogger().addHandler(file_handler)


def _init_stream_logging():
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    stream_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(stream_handler)
