"""Networking helpers for tests."""
from __future__ import annotations

import socket


def open_port(host: str = '') -> int:
    """Find a free TCP port to run a test server on.

    The port is released before returning so a server started shortly
    after can bind to it.

    Source: https://stackoverflow.com/questions/2838244
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        s.listen(1)
        return s.getsockname()[1]
