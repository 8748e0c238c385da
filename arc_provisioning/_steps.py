# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import getpass
import logging
from pathlib import Path
from typing import Callable
from typing import List
from typing import Mapping
from typing import NamedTuple
from typing import Optional

from arc_access import CommandFailed
from arc_access import LocalShell
from arc_access import Ssh
from arc_access import check_local_privilege
from arc_access import detect_privilege
from arc_access import local_shell
from arc_provisioning import _account
from arc_provisioning import _firewall
from arc_provisioning import _hosts
from arc_provisioning import _nfs
from arc_provisioning import _packages
from arc_provisioning import _prompt
from arc_provisioning import _waypipe
from arc_provisioning._config import ArcConfig
from arc_provisioning._errors import ServiceError
from arc_provisioning._errors import ValidationError
from arc_provisioning._machine import LocalMachine
from arc_provisioning._machine import RemoteMachine
from arc_provisioning._os_release import LOCAL_SUPPORTED
from arc_provisioning._os_release import REMOTE_SUPPORTED
from arc_provisioning._os_release import detect_os_id
from arc_provisioning._registry import Registry
from arc_provisioning._registry import Step
from arc_provisioning._registry import step_definitions
from arc_provisioning._ssh_identity import ensure_key_pair
from arc_provisioning._ssh_identity import private_key_path
from arc_provisioning._ssh_identity import read_public_key_line
from arc_provisioning._target import ConnectTarget
from arc_provisioning._target import parse_connect_target
from arc_provisioning._tunnel import LocalTunnelEnd
from arc_provisioning._tunnel import RemoteTunnelEnd
from arc_provisioning._tunnel import verify_tunnel
from arc_provisioning._wireguard_config import SERVER_IP
from arc_provisioning._wireguard_config import WG_INTERFACE
from arc_provisioning._wireguard_config import TunnelConfig
from arc_provisioning._wireguard_config import build_tunnel_config

_logger = logging.getLogger(__name__)


class StepRequest(NamedTuple):
    bootstrap_user: str
    host: str
    address: str
    password: str
    use_sudo: bool = False
    pub_key_line: str = ''
    tunnel: TunnelConfig = TunnelConfig.empty()
    step_id: str = ''


class StepResult(NamedTuple):
    use_sudo: Optional[bool] = None
    pub_key_line: str = ''
    ready_as: str = ''
    tunnel: Optional[TunnelConfig] = None


Executor = Callable[[StepRequest], Optional[StepResult]]


class StepExecutors:
    """One method per step; each opens its own sessions and closes them."""

    def __init__(self, config: ArcConfig, shell: LocalShell = local_shell, home: Optional[Path] = None):
        self._config = config
        self._shell = shell
        self._local = LocalMachine(shell)
        self._home = home or Path.home()
        self._key_path = private_key_path(self._home / '.ssh')

    def as_mapping(self) -> Mapping[str, Executor]:
        return {
            'server.detect_privileged_mode': self.detect_privileged_mode,
            'server.create_arc_user': self.create_arc_user,
            'server.add_arc_to_sudoers': self.add_arc_to_sudoers,
            'server.create_arc_hushlogin': self.create_arc_hushlogin,
            'local.ensure_ssh_key': self.ensure_ssh_key,
            'verify.add_arc_authorized_key': self.add_arc_authorized_key,
            'verify.verify_arc_ssh_login': self.verify_arc_ssh_login,
            'server.install_zsh': self.install_remote_zsh,
            'server.set_zsh_default_shell': self.set_remote_default_shell,
            'server.install_arc_zsh_prompt': self.install_remote_prompt,
            'server.install_arc_tmux_config': self.install_remote_tmux_config,
            'server.detect_os': self.detect_remote_os,
            'server.install_wireguard': self.install_remote_wireguard,
            'server.write_wg_conf': self.write_remote_wg_conf,
            'server.open_ufw_wireguard': self.open_remote_firewall,
            'server.enable_wg': self.enable_remote_wg,
            'server.apply_nftables_redirect': self.apply_remote_nftables_redirect,
            'local.add_hosts_aliases': self.add_local_hosts_aliases,
            'local.install_arc_prompt': self.install_local_prompt,
            'local.install_zsh': self.install_local_zsh,
            'local.set_zsh_default_shell': self.set_local_default_shell,
            'local.detect_os': self.detect_local_os,
            'local.install_wireguard': self.install_local_wireguard,
            'local.write_wg_conf': self.write_local_wg_conf,
            'local.enable_wg': self.enable_local_wg,
            'verify.verify_tunnel_connectivity': self.verify_tunnel_connectivity,
            'server.resolve_arc_uid_gid': self.resolve_arc_uid_gid,
            'server.install_nfs_server': self.install_remote_nfs_server,
            'server.export_arc_nfs': self.export_remote_arc_nfs,
            'local.install_nfs_client': self.install_local_nfs_client,
            'local.configure_arc_automount': self.configure_local_automount,
            'verify.verify_arc_nfs_mount': self.verify_local_nfs_mount,
            'server.configure_waypipe_runtime': self.configure_remote_waypipe,
            'local.configure_waypipe_tunnel': self.configure_local_waypipe,
            }

    def _bootstrap_ssh(self, request: StepRequest) -> Ssh:
        return Ssh.from_address(
            request.bootstrap_user, request.address,
            password=request.password,
            connect_timeout_sec=self._config.password_connect_timeout_sec,
            command_timeout_sec=self._config.command_timeout_sec,
            )

    def _arc_ssh(self, request: StepRequest) -> Ssh:
        return _account.arc_session(
            request.address, self._key_path,
            self._config.key_connect_timeout_sec,
            self._config.command_timeout_sec,
            )

    @staticmethod
    def _tunnel(request: StepRequest) -> TunnelConfig:
        if not request.tunnel.is_built():
            raise ValidationError("WireGuard tunnel config is not built; host is missing")
        return request.tunnel

    def _local_os_id(self) -> str:
        return detect_os_id(self._local, LOCAL_SUPPORTED)

    def detect_privileged_mode(self, request):
        with self._bootstrap_ssh(request) as ssh:
            use_sudo = detect_privilege(request.bootstrap_user, ssh, request.password)
        return StepResult(use_sudo=use_sudo)

    def create_arc_user(self, request):
        with self._bootstrap_ssh(request) as ssh:
            _account.ensure_user(ssh, request.use_sudo, request.password)

    def add_arc_to_sudoers(self, request):
        with self._bootstrap_ssh(request) as ssh:
            _account.ensure_sudoers(ssh, request.use_sudo, request.password)

    def create_arc_hushlogin(self, request):
        with self._bootstrap_ssh(request) as ssh:
            _account.ensure_hushlogin(ssh, request.use_sudo, request.password)

    def ensure_ssh_key(self, request):
        public_path = ensure_key_pair(self._key_path.parent)
        return StepResult(pub_key_line=read_public_key_line(public_path))

    def add_arc_authorized_key(self, request):
        if not request.pub_key_line.strip():
            raise ValidationError("Missing public key line; local SSH key step has not run")
        with self._bootstrap_ssh(request) as ssh:
            _account.ensure_authorized_key(ssh, request.use_sudo, request.password, request.pub_key_line)

    def verify_arc_ssh_login(self, request):
        with self._arc_ssh(request) as ssh:
            _account.verify_login(ssh)

    def install_remote_zsh(self, request):
        with self._arc_ssh(request) as ssh:
            remote = RemoteMachine(ssh)
            _prompt.install_zsh(remote, detect_os_id(remote, REMOTE_SUPPORTED))

    def set_remote_default_shell(self, request):
        with self._arc_ssh(request) as ssh:
            _prompt.set_default_shell(RemoteMachine(ssh), _account.ARC_USER)

    def install_remote_prompt(self, request):
        with self._arc_ssh(request) as ssh:
            _prompt.install_remote_prompt(RemoteMachine(ssh))

    def install_remote_tmux_config(self, request):
        with self._arc_ssh(request) as ssh:
            _prompt.install_remote_tmux_config(RemoteMachine(ssh))

    def detect_remote_os(self, request):
        with self._arc_ssh(request) as ssh:
            detect_os_id(RemoteMachine(ssh), REMOTE_SUPPORTED)

    def install_remote_wireguard(self, request):
        with self._arc_ssh(request) as ssh:
            remote = RemoteMachine(ssh)
            _packages.install_wireguard(remote, detect_os_id(remote, REMOTE_SUPPORTED))

    def write_remote_wg_conf(self, request):
        tunnel = self._tunnel(request)
        with self._arc_ssh(request) as ssh:
            end = RemoteTunnelEnd(ssh)
            # A running interface keeps stale keys and peers.
            end.stop()
            RemoteMachine(ssh).run(
                ['sh', '-c', f'umask 077 && mkdir -p ~/.arc/wireguard && cat > ~/.arc/wireguard/server-{WG_INTERFACE}.conf'],
                input=tunnel.server_conf,
                )
            end.install_config(tunnel.server_conf)

    def open_remote_firewall(self, request):
        with self._arc_ssh(request) as ssh:
            _firewall.open_wireguard_port(RemoteMachine(ssh))

    def enable_remote_wg(self, request):
        with self._arc_ssh(request) as ssh:
            end = RemoteTunnelEnd(ssh)
            end.enable()
            # Restart even if running to apply the freshly written config.
            end.restart()

    def apply_remote_nftables_redirect(self, request):
        with self._arc_ssh(request) as ssh:
            remote = RemoteMachine(ssh)
            _firewall.apply_redirect(remote, detect_os_id(remote, REMOTE_SUPPORTED))

    def add_local_hosts_aliases(self, request):
        _hosts.ensure_host_aliases(self._local, request.host)

    def install_local_prompt(self, request):
        _prompt.install_local_prompt(self._home)

    def install_local_zsh(self, request):
        _prompt.install_zsh(self._local, self._local_os_id())

    def set_local_default_shell(self, request):
        _prompt.set_default_shell(self._local, getpass.getuser())

    def detect_local_os(self, request):
        self._local_os_id()

    def install_local_wireguard(self, request):
        _packages.install_wireguard(self._local, self._local_os_id())

    def write_local_wg_conf(self, request):
        tunnel = self._tunnel(request)
        copies_dir = self._config.state_dir / 'wireguard'
        copies_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        client_copy = copies_dir / f'client-{WG_INTERFACE}.conf'
        for path, text in [
                (client_copy, tunnel.client_conf),
                (copies_dir / f'server-{WG_INTERFACE}.conf', tunnel.server_conf),
                ]:
            path.touch(mode=0o600)
            path.chmod(0o600)
            path.write_text(text)
        end = LocalTunnelEnd(self._shell)
        end.stop()
        try:
            end.install_config(tunnel.client_conf)
        except CommandFailed as e:
            raise ServiceError(f"sudo is required to install system config; config saved to {client_copy}") from e

    def enable_local_wg(self, request):
        end = LocalTunnelEnd(self._shell)
        end.enable()
        try:
            end.restart()
        except CommandFailed as e:
            raise ServiceError(f"{e}\n\n{end.service_report()}") from e

    def verify_tunnel_connectivity(self, request):
        tunnel = self._tunnel(request)

        def ping():
            self._shell.run(['ping', '-c', '1', '-W', str(self._config.ping_timeout_sec), SERVER_IP])

        with self._arc_ssh(request) as ssh:
            verify_tunnel(LocalTunnelEnd(self._shell), RemoteTunnelEnd(ssh), tunnel.endpoint, ping)
        return StepResult(ready_as=f'{_account.ARC_USER}@{request.host}')

    def resolve_arc_uid_gid(self, request):
        with self._arc_ssh(request) as ssh:
            uid, gid = _nfs.resolve_arc_ids(RemoteMachine(ssh))
        _logger.info("Remote arc is %s:%s", uid, gid)

    def install_remote_nfs_server(self, request):
        with self._arc_ssh(request) as ssh:
            remote = RemoteMachine(ssh)
            _nfs.install_server(remote, detect_os_id(remote, REMOTE_SUPPORTED))

    def export_remote_arc_nfs(self, request):
        with self._arc_ssh(request) as ssh:
            _nfs.export_home(RemoteMachine(ssh))

    def install_local_nfs_client(self, request):
        _nfs.install_client(self._local, self._local_os_id())

    def configure_local_automount(self, request):
        _nfs.configure_automount(self._local)

    def verify_local_nfs_mount(self, request):
        _nfs.verify_mount(self._local, attempts=self._config.nfs_verify_attempts)

    def configure_remote_waypipe(self, request):
        with self._arc_ssh(request) as ssh:
            remote = RemoteMachine(ssh)
            _waypipe.configure_remote_runtime(remote, detect_os_id(remote, REMOTE_SUPPORTED))

    def configure_local_waypipe(self, request):
        with self._arc_ssh(request) as ssh:
            remote_uid, _gid = _nfs.resolve_arc_ids(RemoteMachine(ssh))
        _waypipe.configure_local_tunnel(
            self._local, self._local_os_id(), remote_uid, self._key_path, self._home)


class Services:
    """What a presentation layer needs from the engine."""

    def __init__(
            self,
            config: ArcConfig,
            registry: Optional[Registry] = None,
            shell: LocalShell = local_shell,
            ):
        if registry is None:
            registry = Registry(step_definitions(), StepExecutors(config, shell).as_mapping())
        self._config = config
        self._registry = registry
        self._shell = shell

    def check_local_privilege(self):
        check_local_privilege(self._shell)

    @staticmethod
    def parse_connect_target(text: str) -> ConnectTarget:
        return parse_connect_target(text)

    def setup_definition(self) -> List[Step]:
        return self._registry.new_steps()

    def run_step(self, request: StepRequest) -> StepResult:
        executor = self._registry.executor(request.step_id)
        built_tunnel = None
        if not request.tunnel.is_built() and request.host.strip():
            built_tunnel = build_tunnel_config(request.host)
            request = request._replace(tunnel=built_tunnel)
        _logger.info("Run step %s", request.step_id)
        result = executor(request) or StepResult()
        if built_tunnel is not None and result.tunnel is None:
            result = result._replace(tunnel=built_tunnel)
        return result
