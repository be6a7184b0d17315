"""Registry of live peer connections."""
from __future__ import annotations

import dataclasses
import datetime
import logging
from typing import Generic
from typing import Hashable
from typing import TypeVar

logger = logging.getLogger(__name__)

HandleT = TypeVar('HandleT', bound=Hashable)


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(frozen=True, eq=False)
class Peer(Generic[HandleT]):
    """Peer bound to a live connection.

    Attributes:
        peer_id: Self-chosen ID of the peer.
        handle: Connection the peer is reachable on.
        created: Time the peer registered.
    """

    peer_id: str
    handle: HandleT
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Peer):
            return (
                self.peer_id == other.peer_id and self.handle is other.handle
            )
        else:
            return False

    def __hash__(self) -> int:
        return hash((self.peer_id, id(self.handle)))

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        address = getattr(self.handle, 'remote_address', None)
        return (
            f'{self.__class__.__name__}(peer_id={self.peer_id}, '
            f'address={address}, created={created})'
        )


class ConnectionRegistry(Generic[HandleT]):
    """Authoritative map of peer IDs to live connections.

    Each peer ID is bound to at most one connection and each connection
    carries at most one peer ID. A reverse index from connection to peer
    keeps removal on disconnect constant time.

    Warning:
        This class is intended for internal use by the
        [`SignalingServer`][peerlink.server.SignalingServer].
    """

    def __init__(self) -> None:
        self._peers_by_id: dict[str, Peer[HandleT]] = {}
        self._peers_by_handle: dict[HandleT, Peer[HandleT]] = {}

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers_by_id

    def __len__(self) -> int:
        return len(self._peers_by_id)

    def register(self, peer_id: str, handle: HandleT) -> Peer[HandleT]:
        """Bind a peer ID to a connection.

        A previous binding of `peer_id` to a different connection is
        superseded silently and a previous peer ID bound to `handle` is
        released. Registration always succeeds.

        Args:
            peer_id: ID of the peer.
            handle: Connection of the peer.

        Returns:
            The new peer record.
        """
        superseded = self._peers_by_id.get(peer_id)
        if superseded is not None and superseded.handle is not handle:
            self._peers_by_handle.pop(superseded.handle, None)
            logger.info(
                f'Peer {peer_id} registered on a new connection, '
                'superseding the previous connection',
            )

        released = self._peers_by_handle.get(handle)
        if released is not None and released.peer_id != peer_id:
            self._peers_by_id.pop(released.peer_id, None)

        peer = Peer(peer_id=peer_id, handle=handle)
        self._peers_by_id[peer_id] = peer
        self._peers_by_handle[handle] = peer
        return peer

    def remove(self, handle: HandleT) -> str | None:
        """Remove the peer bound to a connection.

        Args:
            handle: Connection to remove the peer of.

        Returns:
            ID of the removed peer or `None` if no peer is currently bound \
            to the connection (e.g., because it was superseded).
        """
        peer = self._peers_by_handle.pop(handle, None)
        if peer is None:
            return None
        # The ID may already be bound to a newer connection.
        if self._peers_by_id.get(peer.peer_id) is peer:
            del self._peers_by_id[peer.peer_id]
        return peer.peer_id

    def resolve(self, peer_id: str) -> HandleT | None:
        """Get the connection a peer ID is currently bound to."""
        peer = self._peers_by_id.get(peer_id)
        return None if peer is None else peer.handle

    def get_peer(self, peer_id: str) -> Peer[HandleT] | None:
        """Get a peer by its ID."""
        return self._peers_by_id.get(peer_id)

    def get_peer_by_handle(self, handle: HandleT) -> Peer[HandleT] | None:
        """Get the peer currently bound to a connection."""
        return self._peers_by_handle.get(handle)

    def get_peers(self) -> list[Peer[HandleT]]:
        """Get all peers in registration order."""
        return list(self._peers_by_id.values())

    def peer_ids(self) -> list[str]:
        """Get the IDs of all peers in registration order."""
        return list(self._peers_by_id)
