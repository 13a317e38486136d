#!/usr/bin/env python3
# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""CPU temperature to fan speed loop for IBM (IMM) and Dell/Unisys BMCs.

Installed alone as /usr/local/sbin/fan_control.py and run by systemd.
Only the standard library is used: the target has nothing but python3 and ipmitool.

Temperature comes from sysfs coretemp hwmons (Package id N), not from
lm-sensors or the BMC SDR. The speed is the baseline plus gains with a deadband,
clamped to [MIN_PCT, MAX_PCT]. IBM banks are written one by one, no detection.
Dell is switched to manual mode, then the global percentage is set.

All settings are environment variables, see /etc/default/fan-control.
"""
import fcntl
import logging
import os
import re
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable
from typing import Mapping
from typing import Sequence


class Settings:

    def __init__(self, env: Mapping[str, str]):
        self.interval = _int(env, 'INTERVAL', 15)
        self.baseline_c = _int(env, 'BASELINE_C', 50)
        self.up_gain = _int(env, 'UP_GAIN', 2)
        self.down_gain = _int(env, 'DOWN_GAIN', 1)
        self.deadband_c = _int(env, 'DEADBAND_C', 1)
        self.min_pct = _int(env, 'MIN_PCT', 5)
        self.max_pct = _int(env, 'MAX_PCT', 50)
        self.vendor = env.get('VENDOR', 'ibm').strip().lower()
        if self.vendor not in ('ibm', 'dell'):
            raise ValueError(f"VENDOR must be ibm or dell, got {self.vendor!r}")
        self.ibm_banks = env.get('IBM_BANKS', '0x01').split()
        self.ibm_codemap = env.get('IBM_CODEMAP', 'linear').strip().lower()
        if self.ibm_codemap not in ('linear', 'table'):
            raise ValueError(f"IBM_CODEMAP must be linear or table, got {self.ibm_codemap!r}")
        self.do_write = env.get('DO_WRITE', '1').strip() == '1'

    def __repr__(self):
        return (
            f'vendor={self.vendor} '
            f'baseline={self.baseline_c}C '
            f'deadband={self.deadband_c}C '
            f'range={self.min_pct}..{self.max_pct}% '
            f'map={self.ibm_codemap} '
            f'write={int(self.do_write)}')


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name, '').strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def read_hottest_package_temp(hwmon_root: Path = Path('/sys/class/hwmon')) -> int:
    """Hottest package temperature across all sockets, whole degrees Celsius.

    If a coretemp hwmon has no package labels, its core inputs are used.
    """
    best = -1
    for hwmon in sorted(hwmon_root.glob('*')):
        name = _read(hwmon / 'name')
        if name is None or not _coretemp_re.search(name):
            continue
        package_inputs = []
        for label_path in sorted(hwmon.glob('temp*_label')):
            label = _read(label_path)
            if label is not None and _package_re.search(label):
                package_inputs.append(label_path.with_name(label_path.name[:-len('_label')] + '_input'))
        if package_inputs:
            inputs = package_inputs
        else:
            inputs = sorted(hwmon.glob('temp*_input'))
        for input_path in inputs:
            degrees = _read_degrees(input_path)
            if degrees is not None and degrees > best:
                best = degrees
    if best < 0:
        raise TemperatureUnavailable(f"No CPU temperature in coretemp hwmons under {hwmon_root}")
    return best


def _read(path: Path):
    try:
        return path.read_text()
    except OSError:
        return None


def _read_degrees(path: Path):
    text = _read(path)
    if text is None:
        return None
    if text.strip().startswith('-'):
        _logger.debug("%s: negative reading %s", path, text.strip())
        return None
    digits = ''.join(c for c in text if c.isdigit())
    if not digits:
        return None
    degrees = int(digits) // 1000
    if not 0 < degrees <= 120:
        _logger.debug("%s: %d C is out of range", path, degrees)
        return None
    return degrees


def target_percent(temp_c: int, settings: Settings) -> int:
    err = temp_c - settings.baseline_c
    if settings.deadband_c > 0 and abs(err) <= settings.deadband_c:
        return settings.min_pct
    if err >= 0:
        pct = settings.min_pct + settings.up_gain * err
    else:
        pct = settings.min_pct - settings.down_gain * -err
    return max(settings.min_pct, min(settings.max_pct, pct))


def _clamp_pct(pct: int) -> int:
    return max(0, min(100, pct))


def ibm_hex_for_pct(pct: int, codemap: str) -> str:
    """Map a percentage to the IMM fan code.

    >>> ibm_hex_for_pct(0, 'linear'), ibm_hex_for_pct(50, 'linear'), ibm_hex_for_pct(100, 'linear')
    ('0x12', '0x89', '0xFF')
    >>> ibm_hex_for_pct(26, 'table'), ibm_hex_for_pct(96, 'table')
    ('0x35', '0xFF')
    """
    pct = _clamp_pct(pct)
    if codemap == 'linear':
        span = _ibm_max_code - _ibm_min_code
        code = _ibm_min_code + (pct * span + 50) // 100
        code = max(_ibm_min_code, min(_ibm_max_code, code))
        return f'0x{code:02X}'
    for limit, code in _ibm_table:
        if pct <= limit:
            return f'0x{code:02X}'
    return f'0x{_ibm_max_code:02X}'


def dell_hex_for_pct(pct: int) -> str:
    """Dell takes the percentage itself.

    >>> dell_hex_for_pct(35), dell_hex_for_pct(150)
    ('0x23', '0x64')
    """
    return f'0x{_clamp_pct(pct):02x}'


class FanWriter:

    def __init__(self, settings: Settings, runner: Callable[..., object] = subprocess.run):
        self._settings = settings
        self._runner = runner

    def set_percent(self, pct: int):
        if self._settings.vendor == 'ibm':
            for bank in self._settings.ibm_banks:
                code = ibm_hex_for_pct(pct, self._settings.ibm_codemap)
                self._run(['ipmitool', 'raw', '0x3a', '0x07', bank, code, '0x01'])
        else:
            self._run(['ipmitool', 'raw', '0x30', '0x30', '0x01', '0x00'])
            self._run(['ipmitool', 'raw', '0x30', '0x30', '0x02', '0xff', dell_hex_for_pct(pct)])

    def _run(self, args: Sequence[str]):
        _logger.info("+ %s", ' '.join(args))
        if self._settings.do_write:
            self._runner(args, check=True)


def control_once(settings: Settings, writer: FanWriter, hwmon_root: Path) -> int:
    hot = read_hottest_package_temp(hwmon_root)
    want = target_percent(hot, settings)
    writer.set_percent(want)
    if settings.vendor == 'ibm':
        _logger.info(
            "IBM: HOT=%d°C -> %d%% banks=[%s] map=%s",
            hot, want, ' '.join(settings.ibm_banks), settings.ibm_codemap)
    else:
        _logger.info("DELL: HOT=%d°C -> %d%%", hot, want)
    return want


def try_lock_exclusively(fileno: int) -> bool:
    try:
        fcntl.flock(fileno, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def main():
    settings = Settings(os.environ)
    with open(_lock_path, 'w') as lock_file:
        if not try_lock_exclusively(lock_file.fileno()):
            _logger.info("already running (lock %s). Exiting. PID=%d", _lock_path, os.getpid())
            return 0
        _logger.info("start %r", settings)
        writer = FanWriter(settings)
        while True:
            try:
                control_once(settings, writer, _hwmon_root)
            except TemperatureUnavailable:
                _logger.info("no CPU temp via sysfs coretemp; try 'modprobe coretemp'")
            time.sleep(settings.interval)


class TemperatureUnavailable(Exception):
    pass


_coretemp_re = re.compile(r'coretemp', re.IGNORECASE)
_package_re = re.compile(r'package\s*id\s*\d+', re.IGNORECASE)
_ibm_min_code = 0x12
_ibm_max_code = 0xFF
_ibm_table = [
    (0, 0x12),
    (25, 0x30),
    (30, 0x35),
    (35, 0x3A),
    (40, 0x40),
    (50, 0x50),
    (60, 0x60),
    (70, 0x70),
    (80, 0x80),
    (90, 0x90),
    (95, 0xA0),
    ]
_lock_path = '/var/run/fan_control.lock'
_hwmon_root = Path('/sys/class/hwmon')
_logger = logging.getLogger(__name__)

if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stdout,
        format='[%(asctime)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        )
    exit(main())
