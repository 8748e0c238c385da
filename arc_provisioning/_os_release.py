# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from typing import Mapping
from typing import Sequence

from arc_provisioning._errors import UnsupportedPlatformError
from arc_provisioning._machine import Machine

_logger = logging.getLogger(__name__)

REMOTE_SUPPORTED = ('ubuntu', 'debian')
LOCAL_SUPPORTED = ('ubuntu', 'debian', 'arch', 'manjaro')
APT_FAMILY = ('ubuntu', 'debian')
PACMAN_FAMILY = ('arch', 'manjaro')


def parse_os_release(text: str) -> Mapping[str, str]:
    """Parse /etc/os-release into a dict.

    >>> parse_os_release('# c\\nNAME="Ubuntu"\\nID=ubuntu\\nVERSION_ID="22.04"\\n')
    {'NAME': 'Ubuntu', 'ID': 'ubuntu', 'VERSION_ID': '22.04'}
    """
    result = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        key, sep, value = line.partition('=')
        key = key.strip()
        if sep and key:
            result[key] = value.strip().strip('"\'')
    return result


def detect_os_id(machine: Machine, supported: Sequence[str]) -> str:
    os_id = parse_os_release(machine.run(['cat', '/etc/os-release'])).get('ID', '')
    _logger.info("%s: OS ID %r", machine.name, os_id)
    if os_id not in supported:
        raise UnsupportedPlatformError(machine.name, os_id, supported)
    return os_id
