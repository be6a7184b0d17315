"""Signaling server configuration file parsing."""
from __future__ import annotations

import logging
import pathlib
import sys
from typing import Any
from typing import Literal

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from peerlink.utils.config import load


class AuthConfig(BaseModel):
    """Peer authentication configuration.

    Attributes:
        method: Authentication method. `None` disables authentication.
        kwargs: Arbitrary keyword arguments to pass to the authenticator.
            The kwargs are excluded from the [`repr()`][repr] of this
            class because they often contain secrets.
    """

    model_config = ConfigDict(extra='forbid')

    method: Literal['shared-secret'] | None = None
    kwargs: dict[str, Any] = Field(default_factory=dict, repr=False)


class LoggingConfig(BaseModel):
    """Signaling server logging configuration.

    Attributes:
        log_dir: Default logging directory.
        default_level: Default logging level for the root logger.
        websockets_level: Log level for the `websockets` logger. Websockets
            logs with much higher frequency so it is suggested to set this
            to `WARNING` or higher.
        current_peer_interval: Optional seconds between logging the
            number of currently connected peers.
        current_peer_limit: Max threshold for enumerating the
            detailed list of connected peers. If `None`, no detailed
            list will be logged.
    """

    log_dir: str | None = None
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    current_peer_interval: int | None = 60
    current_peer_limit: int | None = 32


class ServingConfig(BaseModel):
    """Signaling server serving configuration.

    Attributes:
        host: Network interface the server binds to.
        port: Network port the server binds to.
        certfile: Certificate file (PEM format) use to enable TLS.
        keyfile: Private key file. If not specified, the key will be
            taken from the certfile.
        auth: Authentication configuration.
        logging: Logging configuration.
        max_message_bytes: Maximum size in bytes of messages received by
            the server.
    """

    host: str | None = None
    port: int = 3001
    certfile: str | None = None
    keyfile: str | None = None
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    max_message_bytes: int | None = None

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            Serve with TLS and a shared secret.
            ```toml title="peerlink.toml"
            host = "0.0.0.0"
            port = 3001
            certfile = "/path/to/cert.pem"
            keyfile = "/path/to/privkey.pem"

            [auth]
            method = "shared-secret"

            [auth.kwargs]
            secret = "..."

            [logging]
            log_dir = "/path/to/log/dir"
            default_level = "INFO"
            websockets_level = "WARNING"
            current_peer_interval = 60
            current_peer_limit = 32
            ```

            ```python
            from peerlink.config import ServingConfig

            config = ServingConfig.from_toml('peerlink.toml')
            ```

        Note:
            Omitted values will be set to their defaults.
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)
