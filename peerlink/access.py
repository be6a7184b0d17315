"""Decide whether one peer may reach another."""
from __future__ import annotations

from peerlink.trust import Invitee
from peerlink.trust import Master
from peerlink.trust import TrustLedger


def in_trust_scope(
    ledger: TrustLedger,
    sender_id: str,
    target_id: str,
) -> bool:
    """Check if `target_id` is within the trust scope of `sender_id`.

    - A master may reach itself and its invitees.
    - An invitee may reach only its master.
    - A regular peer may reach anyone.

    Args:
        ledger: Trust ledger holding the invite link relationships.
        sender_id: ID of the sending peer.
        target_id: ID of the destination peer.
    """
    role = ledger.role_of(sender_id)
    if isinstance(role, Master):
        return target_id == sender_id or target_id in role.invitees
    elif isinstance(role, Invitee):
        return target_id == role.master_id
    else:
        return True


def authorize(ledger: TrustLedger, sender_id: str, target_id: str) -> bool:
    """Check if `sender_id` may send signaling or chat to `target_id`.

    The target must be within the sender's trust scope (see
    [`in_trust_scope()`][peerlink.access.in_trust_scope]) and be online,
    unless the target is the sender itself. Once a master disconnects, its
    former invitees are therefore denied access to it even though they
    fall back to the regular role.

    Evaluated from the current registry and ledger state on every call and
    free of side effects.

    Args:
        ledger: Trust ledger holding the invite link relationships.
        sender_id: ID of the sending peer.
        target_id: ID of the destination peer.

    Returns:
        `True` if the message may be forwarded.
    """
    if target_id != sender_id and target_id not in ledger.registry:
        return False
    return in_trust_scope(ledger, sender_id, target_id)
