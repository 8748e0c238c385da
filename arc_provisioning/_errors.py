# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from typing import Sequence


class ConfigurationError(Exception):

    def __init__(self, message: str, problems: Sequence[str] = ()):
        if problems:
            message = message + ':\n' + '\n'.join('- ' + p for p in problems)
        super().__init__(message)
        self.problems = list(problems)


class ValidationError(ValueError):
    pass


class UnsupportedPlatformError(Exception):

    def __init__(self, machine: str, os_id: str, supported: Sequence[str]):
        super().__init__(
            f"Unsupported {machine} OS {os_id!r}; supported: {', '.join(supported)}")
        self.machine = machine
        self.os_id = os_id


class WireGuardConfigError(ValueError):
    pass


class TunnelDriftError(Exception):
    """Tunnel does not pass traffic even after the peer keys were synced."""

    def __init__(
            self,
            probe_error: str,
            repair_error: str,
            local_diagnostics: str,
            remote_diagnostics: str,
            ):
        super().__init__(probe_error, repair_error, local_diagnostics, remote_diagnostics)
        self.probe_error = probe_error
        self.repair_error = repair_error
        self.local_diagnostics = local_diagnostics
        self.remote_diagnostics = remote_diagnostics

    def __str__(self):
        return '\n'.join([
            f"Tunnel ping failed: {self.probe_error}",
            f"Auto-repair: {self.repair_error}",
            "Local WireGuard state:",
            self.local_diagnostics,
            "Remote WireGuard state:",
            self.remote_diagnostics,
            ])


class NfsMountError(Exception):
    pass


class PackageInstallError(Exception):

    def __init__(self, message: str, install_log: str):
        super().__init__(message + '\n' + install_log)
        self.install_log = install_log


class ServiceError(Exception):
    pass
