# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import fnmatch
import logging
import os
from configparser import ConfigParser
from pathlib import Path
from typing import Mapping
from typing import NamedTuple

from arc_provisioning._errors import ConfigurationError

_logger = logging.getLogger(__name__)


class ArcConfig(NamedTuple):
    password_connect_timeout_sec: float = 10
    key_connect_timeout_sec: float = 8
    command_timeout_sec: float = 600
    ping_timeout_sec: int = 2
    nfs_verify_attempts: int = 5
    state_dir: Path = Path('~/.arc').expanduser()


def default_config_path() -> Path:
    return Path(os.environ.get('ARC_CONFIG', '~/.config/arc/arc.ini')).expanduser()


def load_config(remote_host: str, path: Path = None) -> ArcConfig:
    if path is None:
        path = default_config_path()
    values = _read_config(path, remote_host)
    return _make_config(values, path)


def _read_config(path: Path, remote_host: str) -> Mapping[str, str]:
    """Merge [defaults] with the sections whose mask matches the host.

    Sections other than [defaults] are fnmatch masks like "[*.example.com]"
    or "[10.1.2.*]". The [defaults] section goes first regardless of its
    position in the file, masked sections override it in file order.
    """
    config_parser = ConfigParser(default_section='__none__')
    if not config_parser.read(path):
        _logger.debug("Config %s: not found, use defaults", path)
        return {}
    config_parts = []
    for section_i, section in enumerate(config_parser.sections()):
        if section == 'defaults':
            config_parts.append((0, section_i, config_parser.items(section)))
        elif fnmatch.fnmatch(remote_host, section):
            _logger.info("Config %s: section %s: read", path, section)
            config_parts.append((1, section_i, config_parser.items(section)))
        else:
            _logger.debug("Config %s: section %s: skip", path, section)
    config_parts.sort(key=lambda part: part[:2])
    config = {}
    for _priority, _section_i, items in config_parts:
        config.update(items)
    return config


def _make_config(values: Mapping[str, str], path: Path) -> ArcConfig:
    defaults = ArcConfig()
    kwargs = {}
    for key, value in values.items():
        if key not in ArcConfig._fields:
            raise ConfigurationError(f"Config {path}: unknown key {key!r}")
        default = getattr(defaults, key)
        try:
            if isinstance(default, Path):
                kwargs[key] = Path(value).expanduser()
            else:
                kwargs[key] = type(default)(value)
        except ValueError:
            raise ConfigurationError(f"Config {path}: cannot parse {key}={value!r}")
    return defaults._replace(**kwargs)
