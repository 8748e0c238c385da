# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import logging
from collections import Counter
from enum import Enum
from typing import Callable
from typing import Collection
from typing import List
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Sequence

from arc_provisioning._errors import ConfigurationError
from arc_provisioning._errors import ValidationError

_logger = logging.getLogger(__name__)


class StepDefinition(NamedTuple):
    id: str
    label: str


class StepState(Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    DONE = 'done'
    FAILED = 'failed'


class Step:

    def __init__(self, definition: StepDefinition, state=StepState.PENDING, error: Optional[str] = None):
        self.definition = definition
        self.state = state
        self.error = error

    def __repr__(self):
        return f'<Step {self.id} {self.state.value}>'

    @property
    def id(self):
        return self.definition.id

    @property
    def label(self):
        return self.definition.label

    def copy(self) -> 'Step':
        return Step(self.definition, self.state, self.error)


_CATALOG = [
    StepDefinition('server.detect_privileged_mode', "Server: detect privileged mode"),
    StepDefinition('server.create_arc_user', "Server: create arc user"),
    StepDefinition('server.add_arc_to_sudoers', "Server: add arc to sudoers"),
    StepDefinition('server.create_arc_hushlogin', "Server: create ~/.hushlogin for arc"),
    StepDefinition('local.ensure_ssh_key', "Local: ensure SSH key"),
    StepDefinition('verify.add_arc_authorized_key', "Verify: add arc authorized_keys"),
    StepDefinition('verify.verify_arc_ssh_login', "Verify: verify arc SSH login"),
    StepDefinition('server.install_zsh', "Server: install zsh"),
    StepDefinition('server.set_zsh_default_shell', "Server: set zsh as default shell for arc"),
    StepDefinition('server.install_arc_zsh_prompt', "Server: install ARC zsh prompt"),
    StepDefinition('server.install_arc_tmux_config', "Server: install ARC tmux config"),
    StepDefinition('server.detect_os', "Server: detect OS"),
    StepDefinition('server.install_wireguard', "Server: install WireGuard"),
    StepDefinition('server.write_wg_conf', "Server: write wg0.conf"),
    StepDefinition('server.open_ufw_wireguard', "Server: open firewall (ufw)"),
    StepDefinition('server.enable_wg', "Server: enable wg0"),
    StepDefinition('server.apply_nftables_redirect', "Server: apply nftables redirect service"),
    StepDefinition('local.add_hosts_aliases', "Local: add hosts aliases"),
    StepDefinition('local.install_arc_prompt', "Local: install ARC local prompt"),
    StepDefinition('local.install_zsh', "Local: install zsh"),
    StepDefinition('local.set_zsh_default_shell', "Local: set zsh as default shell"),
    StepDefinition('local.detect_os', "Local: detect OS"),
    StepDefinition('local.install_wireguard', "Local: install WireGuard"),
    StepDefinition('local.write_wg_conf', "Local: write wg0.conf"),
    StepDefinition('local.enable_wg', "Local: enable wg0"),
    StepDefinition('verify.verify_tunnel_connectivity', "Verify: verify tunnel connectivity"),
    StepDefinition('server.resolve_arc_uid_gid', "Server: resolve arc UID/GID for NFS squash"),
    StepDefinition('server.install_nfs_server', "Server: install NFS server"),
    StepDefinition('server.export_arc_nfs', "Server: export /home/arc over NFS (WireGuard only)"),
    StepDefinition('local.install_nfs_client', "Local: install NFS client"),
    StepDefinition('local.configure_arc_automount', "Local: configure /home/arc automount"),
    StepDefinition('verify.verify_arc_nfs_mount', "Verify: verify /home/arc NFS mount"),
    StepDefinition('server.configure_waypipe_runtime', "Server: configure waypipe runtime"),
    StepDefinition('local.configure_waypipe_tunnel', "Local: configure persistent waypipe tunnel"),
    ]


def step_definitions() -> List[StepDefinition]:
    return list(_CATALOG)


def validate(definitions: Sequence[StepDefinition], executor_ids: Collection[str]):
    """Check that definitions and executors correspond one to one.

    All problems are reported at once.
    """
    problems = []
    if not definitions:
        problems.append("Step catalog is empty")
    for i, definition in enumerate(definitions):
        if not definition.id.strip():
            problems.append(f"Step #{i} has empty ID")
        if not definition.label.strip():
            problems.append(f"Step {definition.id!r} has empty label")
    counts = Counter(definition.id for definition in definitions)
    for step_id, count in counts.items():
        if count > 1:
            problems.append(f"Duplicate step ID {step_id!r} ({count} times)")
    for step_id in counts:
        if step_id.strip() and step_id not in executor_ids:
            problems.append(f"Missing executor for step ID {step_id!r}")
    for step_id in sorted(executor_ids):
        if step_id not in counts:
            problems.append(f"Executor registered for undefined step ID {step_id!r}")
    if problems:
        raise ConfigurationError("Invalid step registry", problems)


class Registry:
    """Validated catalog of steps with their executors."""

    def __init__(self, definitions: Sequence[StepDefinition], executors: Mapping[str, Callable]):
        validate(definitions, executors.keys())
        self._definitions = list(definitions)
        self._executors = dict(executors)
        _logger.debug("Registry of %d steps is valid", len(self._definitions))

    def definitions(self) -> List[StepDefinition]:
        return list(self._definitions)

    def new_steps(self) -> List[Step]:
        return [Step(definition) for definition in self._definitions]

    def ids(self) -> List[str]:
        return [definition.id for definition in self._definitions]

    def executor(self, step_id: str) -> Callable:
        if not step_id:
            raise ValidationError("Missing step ID")
        try:
            return self._executors[step_id]
        except KeyError:
            raise ValidationError(f"Unknown step ID {step_id!r}")
