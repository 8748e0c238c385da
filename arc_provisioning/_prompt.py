# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable
from typing import Tuple

from arc_provisioning._machine import Machine
from arc_provisioning._managed_text import ensure_sources_bashrc
from arc_provisioning._managed_text import upsert_block
from arc_provisioning._packages import install_packages

_logger = logging.getLogger(__name__)

PROMPT_START = '### ARC_PROMPT_START'
PROMPT_END = '### ARC_PROMPT_END'
TMUX_START = '### ARC_TMUX_START'
TMUX_END = '### ARC_TMUX_END'


def template(name: str) -> str:
    return Path(__file__).with_name('templates').joinpath(name).read_text()


def install_zsh(machine: Machine, os_id: str):
    install_packages(machine, os_id, ['zsh'])


def set_default_shell(machine: Machine, user: str):
    zsh = machine.run(['sh', '-c', 'command -v zsh'])
    current = machine.run(['getent', 'passwd', user]).split(':')[-1]
    if current == zsh:
        _logger.info("%s: %s already has %s", machine.name, user, zsh)
        return
    machine.sudo(['usermod', '--shell', zsh, user])


def _upsert_remote_file(machine: Machine, name: str, start: str, end: str, block: str):
    content = machine.run(['sh', '-c', f'cat ~/{name} 2>/dev/null || true'], strip=False)
    updated, changed = upsert_block(content, start, end, block)
    if not changed:
        _logger.info("%s: ~/%s is up to date", machine.name, name)
        return
    machine.run(['sh', '-c', f'cat > ~/{name}'], input=updated)


def install_remote_prompt(machine: Machine):
    _upsert_remote_file(machine, '.zshrc', PROMPT_START, PROMPT_END, template('prompt_remote.zsh'))


def install_remote_tmux_config(machine: Machine):
    _upsert_remote_file(machine, '.tmux.conf', TMUX_START, TMUX_END, template('tmux_remote.conf'))


def _upsert_local_file(path: Path, transform: Callable[[str], Tuple[str, bool]]):
    try:
        content = path.read_text()
        mode = path.stat().st_mode & 0o777
    except FileNotFoundError:
        content = ''
        mode = 0o600
    updated, changed = transform(content)
    if not changed:
        _logger.info("%s is up to date", path)
        return
    _logger.info("Update %s", path)
    fd, temp_name = tempfile.mkstemp(prefix=path.name + '.', dir=path.parent)
    try:
        with os.fdopen(fd, 'w') as f:
            f.write(updated)
        os.chmod(temp_name, mode)
        os.replace(temp_name, path)
    except BaseException:
        os.unlink(temp_name)
        raise


def install_local_prompt(home: Path):
    _upsert_local_file(
        home / '.zshrc',
        lambda c: upsert_block(c, PROMPT_START, PROMPT_END, template('prompt_local.zsh')))
    _upsert_local_file(
        home / '.bashrc',
        lambda c: upsert_block(c, PROMPT_START, PROMPT_END, template('prompt_local.bash')))
    _upsert_local_file(home / '.bash_profile', ensure_sources_bashrc)
