# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
from typing import NamedTuple

from arc_provisioning._errors import ValidationError

DEFAULT_SSH_PORT = 22


class ConnectTarget(NamedTuple):
    user: str
    host: str
    address: str


def parse_connect_target(text: str) -> ConnectTarget:
    """Parse user@host[:port]; IPv6 hosts go bare or in brackets.

    >>> parse_connect_target('alice@10.0.0.5')
    ConnectTarget(user='alice', host='10.0.0.5', address='10.0.0.5:22')
    >>> parse_connect_target('bob@example.com:2222')
    ConnectTarget(user='bob', host='example.com', address='example.com:2222')
    >>> parse_connect_target('root@[fd00::1]:2200')
    ConnectTarget(user='root', host='fd00::1', address='[fd00::1]:2200')
    >>> parse_connect_target('root@fd00::1')
    ConnectTarget(user='root', host='fd00::1', address='[fd00::1]:22')
    """
    user, at, rest = text.strip().partition('@')
    user = user.strip()
    rest = rest.strip()
    if not at:
        raise ValidationError(f"Invalid target {text!r}, expected user@host")
    if not user:
        raise ValidationError(f"Invalid target {text!r}: user is empty")
    if not rest:
        raise ValidationError(f"Invalid target {text!r}: host is empty")
    host, port = _split_host_port(rest)
    if not host:
        raise ValidationError(f"Invalid target {text!r}: host is empty")
    if ':' in host:
        address = f'[{host}]:{port}'
    else:
        address = f'{host}:{port}'
    return ConnectTarget(user, host, address)


def _split_host_port(text):
    if text.startswith('['):
        host, bracket, port = text[1:].partition(']')
        if not bracket:
            raise ValidationError(f"Invalid host {text!r}: unclosed bracket")
        if not port:
            return host, DEFAULT_SSH_PORT
        if not port.startswith(':'):
            raise ValidationError(f"Invalid host {text!r}: garbage after bracket")
        return host, _parse_port(port[1:])
    if text.count(':') > 1:
        return text, DEFAULT_SSH_PORT
    host, colon, port = text.partition(':')
    if not colon:
        return host, DEFAULT_SSH_PORT
    return host, _parse_port(port)


def _parse_port(text):
    if not text.isdigit() or not 0 < int(text) < 65536:
        raise ValidationError(f"Invalid port {text!r}")
    return int(text)
