"""Authenticate peers when they register."""
from __future__ import annotations

import hmac
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from peerlink.config import AuthConfig
from peerlink.exceptions import UnauthorizedError


@runtime_checkable
class Authenticator(Protocol):
    """Check the credential a peer presents when it registers."""

    def authenticate(self, peer_id: str, credential: str | None) -> None:
        """Authenticate a registering peer.

        Args:
            peer_id: ID the peer is registering under.
            credential: Credential presented by the peer.

        Raises:
            UnauthorizedError: if authentication fails.
        """
        ...


class NullAuthenticator:
    """Authenticator that implements no authentication."""

    def authenticate(self, peer_id: str, credential: str | None) -> None:
        """Accept any peer regardless of the credential."""
        return None


class SharedSecretAuthenticator:
    """Authenticator that compares the credential to a shared secret.

    Note:
        A single static secret shared by all peers only keeps casual
        visitors out. It does not identify peers.

    Args:
        secret: Secret peers must present to register.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError('The shared secret cannot be empty.')
        self._secret = secret.encode()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(secret=***)'

    def authenticate(self, peer_id: str, credential: str | None) -> None:
        """Authenticate a registering peer.

        Raises:
            UnauthorizedError: if the credential is missing or does not match
                the shared secret.
        """
        if credential is None:
            raise UnauthorizedError(
                f'Peer {peer_id} did not provide a credential.',
            )
        if not hmac.compare_digest(credential.encode(), self._secret):
            raise UnauthorizedError(
                f'Peer {peer_id} provided an invalid credential.',
            )


def get_authenticator(config: AuthConfig) -> Authenticator:
    """Create an authenticator from a configuration.

    Args:
        config: Configuration.

    Returns:
        Authenticator.

    Raises:
        ValueError: if the authentication method in the config is unknown.
    """
    kwargs: dict[str, Any] = config.kwargs
    if config.method is None:
        return NullAuthenticator()
    elif config.method == 'shared-secret':
        return SharedSecretAuthenticator(**kwargs)
    else:
        raise ValueError(f'Unknown authentication method "{config.method}."')
