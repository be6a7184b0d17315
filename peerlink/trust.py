"""Invite link trust relationships between peers.

A peer that shares an invite link becomes a *master* once another peer
joins through the link. The joining peer is an *invitee* of exactly one
master for as long as both stay connected. Roles are derived from the
ledger state and never stored on the peers.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any
from typing import Union

from peerlink.exceptions import InviteJoinError
from peerlink.exceptions import MasterNotFoundError
from peerlink.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Master:
    """Peer with one or more invitees.

    Attributes:
        invitees: IDs of the invitees in join order.
    """

    invitees: tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class Invitee:
    """Peer that joined through the invite link of `master_id`."""

    master_id: str


@dataclasses.dataclass(frozen=True)
class Regular:
    """Peer with no trust relationship."""

    pass


Role = Union[Master, Invitee, Regular]


class TrustLedger:
    """Records which invitees joined through which master's invite link.

    Args:
        registry: Registry of live connections. Masters must be registered
            for a join to succeed and invitees are registered on join.
    """

    def __init__(self, registry: ConnectionRegistry[Any]) -> None:
        self._registry = registry
        self._invitees_by_master: dict[str, list[str]] = {}
        self._master_by_invitee: dict[str, str] = {}

    @property
    def registry(self) -> ConnectionRegistry[Any]:
        """Registry of live connections."""
        return self._registry

    def join(self, master_id: str, invitee_id: str, handle: Any) -> None:
        """Join `invitee_id` to the invite link of `master_id`.

        The invitee is registered on `handle` as part of the join. Joining
        the same master again with the same invitee ID is a no-op for the
        ledger but still rebinds the invitee to `handle`.

        Args:
            master_id: ID of the master.
            invitee_id: ID of the joining peer.
            handle: Connection of the joining peer.

        Raises:
            MasterNotFoundError: if `master_id` is not registered.
            InviteJoinError: if the join would make a peer its own invitee,
                nest invite links, attach the invitee to a second master, or
                claim the ID of a regular peer connected elsewhere.
        """
        if master_id not in self._registry:
            raise MasterNotFoundError(
                f'Master {master_id} is not connected.',
            )
        if master_id == invitee_id:
            raise InviteJoinError('A peer cannot join its own invite link.')
        current = self._registry.get_peer_by_handle(handle)
        if current is not None and current.peer_id == master_id:
            raise InviteJoinError(
                'A connection cannot join the invite link of the peer '
                'registered on it.',
            )
        if master_id in self._master_by_invitee:
            raise InviteJoinError(
                f'Master {master_id} is an invitee and cannot invite peers.',
            )
        if invitee_id in self._invitees_by_master:
            raise InviteJoinError(
                f'Peer {invitee_id} is a master and cannot join another '
                'invite link.',
            )
        existing_master = self._master_by_invitee.get(invitee_id)
        if existing_master is not None and existing_master != master_id:
            raise InviteJoinError(
                f'Peer {invitee_id} already joined the invite link of '
                'another master.',
            )
        bound = self._registry.get_peer(invitee_id)
        if (
            bound is not None
            and bound.handle is not handle
            and existing_master is None
        ):
            raise InviteJoinError(
                f'Peer {invitee_id} is already connected and cannot be '
                'claimed through an invite link.',
            )

        if existing_master is None:
            self._invitees_by_master.setdefault(master_id, []).append(
                invitee_id,
            )
            self._master_by_invitee[invitee_id] = master_id
        self._registry.register(invitee_id, handle)
        logger.info(f'Peer {invitee_id} joined invite link of {master_id}')

    def role_of(self, peer_id: str) -> Role:
        """Get the role of a peer."""
        invitees = self._invitees_by_master.get(peer_id)
        if invitees:
            return Master(invitees=tuple(invitees))
        master_id = self._master_by_invitee.get(peer_id)
        if master_id is not None:
            return Invitee(master_id=master_id)
        return Regular()

    def is_invitee(self, peer_id: str) -> bool:
        """Check if a peer is the invitee of any master."""
        return peer_id in self._master_by_invitee

    def masters(self) -> list[str]:
        """Get the IDs of all masters."""
        return list(self._invitees_by_master)

    def on_disconnect(self, peer_id: str) -> None:
        """Update trust relationships after a peer disconnects.

        A disconnecting master loses its edge entirely and its invitees
        become regular peers. A disconnecting invitee is removed from its
        master, and the master's edge is deleted once it has no invitees.
        """
        invitees = self._invitees_by_master.pop(peer_id, None)
        if invitees is not None:
            for invitee_id in invitees:
                self._master_by_invitee.pop(invitee_id, None)
            logger.info(
                f'Removed invite link of master {peer_id} with '
                f'{len(invitees)} invitee(s)',
            )
            return

        master_id = self._master_by_invitee.pop(peer_id, None)
        if master_id is None:
            return
        remaining = self._invitees_by_master[master_id]
        remaining.remove(peer_id)
        if not remaining:
            del self._invitees_by_master[master_id]
            logger.info(f'Removed invite link of master {master_id}')
