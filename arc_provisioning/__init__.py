# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Provision a workstation and a remote host joined by a WireGuard tunnel.

Provisioning is a fixed sequence of steps. Every step is idempotent:
a fresh run re-executes every step, and the second run must not
"accumulate" changes. A failed step stops the run; the human who runs it
must investigate the problem and start over.

The operator's password is used by the first steps only, to create
the arc account and authorize the local key for it. Everything after that
is done as arc with passwordless sudo, over plain SSH.

Both WireGuard key pairs are generated locally. If keys drift apart after
partial re-runs, the connectivity check resyncs the peers once.

Files owned by other tools and by the user are edited in place:
only the managed block or managed lines are touched.
"""
from arc_provisioning._config import ArcConfig
from arc_provisioning._config import load_config
from arc_provisioning._errors import ConfigurationError
from arc_provisioning._errors import NfsMountError
from arc_provisioning._errors import TunnelDriftError
from arc_provisioning._errors import UnsupportedPlatformError
from arc_provisioning._errors import ValidationError
from arc_provisioning._errors import WireGuardConfigError
from arc_provisioning._registry import Registry
from arc_provisioning._registry import Step
from arc_provisioning._registry import StepDefinition
from arc_provisioning._registry import StepState
from arc_provisioning._registry import step_definitions
from arc_provisioning._registry import validate
from arc_provisioning._steps import Services
from arc_provisioning._steps import StepExecutors
from arc_provisioning._steps import StepRequest
from arc_provisioning._steps import StepResult
from arc_provisioning._target import ConnectTarget
from arc_provisioning._target import parse_connect_target
from arc_provisioning._wireguard_config import TunnelConfig
from arc_provisioning._wireguard_config import build_tunnel_config
from arc_provisioning._wireguard_config import parse_private_key
from arc_provisioning._wireguard_config import patch_peer
from arc_provisioning._wireguard_keys import generate_key_pair
from arc_provisioning._wireguard_keys import public_key_from_private
from arc_provisioning._workflow import RunState
from arc_provisioning._workflow import Workflow

__all__ = [
    'ArcConfig',
    'ConfigurationError',
    'ConnectTarget',
    'NfsMountError',
    'Registry',
    'RunState',
    'Services',
    'Step',
    'StepDefinition',
    'StepExecutors',
    'StepRequest',
    'StepResult',
    'StepState',
    'TunnelConfig',
    'TunnelDriftError',
    'UnsupportedPlatformError',
    'ValidationError',
    'WireGuardConfigError',
    'Workflow',
    'build_tunnel_config',
    'generate_key_pair',
    'load_config',
    'parse_connect_target',
    'parse_private_key',
    'patch_peer',
    'public_key_from_private',
    'step_definitions',
    'validate',
    ]
