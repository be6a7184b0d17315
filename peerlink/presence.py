"""Per-peer presence views of who is online."""
from __future__ import annotations

import logging
from typing import Any
from typing import Generic
from typing import TypeVar

from peerlink.messages import PeersList
from peerlink.registry import ConnectionRegistry
from peerlink.registry import Peer
from peerlink.trust import Invitee
from peerlink.trust import Master
from peerlink.trust import TrustLedger

logger = logging.getLogger(__name__)

HandleT = TypeVar('HandleT')


def view_for(ledger: TrustLedger, observer_id: str) -> list[str]:
    """Compute the IDs of the peers visible to an observer.

    - An invitee sees its master (if online) followed by itself.
    - A master sees itself followed by its online invitees.
    - A regular peer sees every online peer except invitees.

    Args:
        ledger: Trust ledger whose registry holds the online peers.
        observer_id: ID of the observing peer.

    Returns:
        Ordered list of visible peer IDs.
    """
    registry = ledger.registry
    role = ledger.role_of(observer_id)

    if isinstance(role, Invitee):
        view = [role.master_id] if role.master_id in registry else []
        if observer_id in registry:
            view.append(observer_id)
        return view
    elif isinstance(role, Master):
        view = [observer_id]
        view.extend(
            invitee for invitee in role.invitees if invitee in registry
        )
        return view
    else:
        return [
            peer_id
            for peer_id in registry.peer_ids()
            if not ledger.is_invitee(peer_id)
        ]


class PresenceBroadcaster(Generic[HandleT]):
    """Compute the presence views pushed to every connected peer.

    Args:
        registry: Registry of live connections.
        ledger: Trust ledger used to filter views.
    """

    def __init__(
        self,
        registry: ConnectionRegistry[Any],
        ledger: TrustLedger,
    ) -> None:
        self._registry = registry
        self._ledger = ledger

    def snapshot(self) -> list[tuple[Peer[HandleT], PeersList]]:
        """Compute the current view of every connected peer.

        The snapshot is computed synchronously so it reflects a single
        consistent state of the registry and ledger even if the messages
        are sent later.

        Returns:
            List of `(peer, message)` pairs to deliver.
        """
        snapshot = []
        for peer in self._registry.get_peers():
            view = view_for(self._ledger, peer.peer_id)
            message = PeersList(peers=[{'peer_id': p} for p in view])
            snapshot.append((peer, message))
        logger.debug(f'Computed presence views for {len(snapshot)} peer(s)')
        return snapshot
