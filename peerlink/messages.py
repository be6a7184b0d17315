"""Message types exchanged between peers and the signaling server.

Every frame on the wire is a JSON object with a `message_type` key naming
a [`MessageType`][peerlink.messages.MessageType] member. The remaining
keys are the fields of the corresponding dataclass.
"""
from __future__ import annotations

import dataclasses
import enum
import json
import sys
from typing import Any


class MessageType(enum.Enum):
    """Types of messages supported.

    Member names are used on the wire and member values are the names of
    the message classes in this module.
    """

    register = 'RegisterRequest'
    """Peer registration request."""
    invite_join = 'InviteJoinRequest'
    """Join a master through an invite link."""
    offer = 'Offer'
    """WebRTC session description offer."""
    answer = 'Answer'
    """WebRTC session description answer."""
    ice_candidate = 'IceCandidate'
    """WebRTC ICE candidate."""
    message = 'ChatMessage'
    """Text chat message."""
    call_invite = 'CallInvite'
    """Ring another peer."""
    call_accept = 'CallAccept'
    """Accept a ringing call."""
    call_reject = 'CallReject'
    """Reject a ringing call."""
    call_end = 'CallEnd'
    """Hang up a call."""
    call_ended = 'CallEnded'
    """Notification that the other side hung up."""
    mark_read = 'MarkRead'
    """Mark messages from a peer as read."""
    messages_read = 'MessagesRead'
    """Notification that a peer read our messages."""
    peers_list = 'PeersList'
    """Presence view of online peers."""
    auth_error = 'AuthError'
    """Registration credential was rejected."""
    invite_error = 'InviteError'
    """Invite link join failed."""
    invite_success = 'InviteSuccess'
    """Invite link join succeeded."""
    new_invitee = 'NewInvitee'
    """A new invitee joined through the master's invite link."""
    master_connected = 'MasterConnected'
    """The invitee is connected to its master."""
    invite_target_offline = 'InviteTargetOffline'
    """The peer a call invite was addressed to is offline."""


@dataclasses.dataclass
class Message:
    """Base message."""

    pass


class RelayedMessage(Message):
    """Base type of messages forwarded from one peer to another.

    Subclasses define a `target_id` field naming the peer the message is
    addressed to.
    """

    target_id: str

    def forwarded(self, sender_id: str) -> Message:
        """Get the form of this message delivered to the target peer.

        Args:
            sender_id: Registered ID of the peer that sent the message. This
                replaces any sender ID supplied by the client.
        """
        return dataclasses.replace(self, sender_id=sender_id)  # type: ignore


@dataclasses.dataclass
class RegisterRequest(Message):
    """Register with the signaling server as a peer.

    Attributes:
        peer_id: Self-chosen ID of the peer.
        credential: Shared secret checked by the server authenticator.
    """

    peer_id: str
    credential: str | None = None
    message_type: str = MessageType.register.name


@dataclasses.dataclass
class InviteJoinRequest(Message):
    """Register as the invitee of a master through an invite link.

    Attributes:
        master_id: ID of the peer that shared the invite link.
        invitee_id: Self-chosen ID of the joining peer.
    """

    master_id: str
    invitee_id: str
    message_type: str = MessageType.invite_join.name


@dataclasses.dataclass
class Offer(RelayedMessage):
    """WebRTC offer.

    Attributes:
        target_id: ID of the destination peer.
        sdp: Session description, forwarded verbatim.
        sender_id: ID of the source peer, set by the server.
    """

    target_id: str
    sdp: Any
    sender_id: str | None = None
    message_type: str = MessageType.offer.name


@dataclasses.dataclass
class Answer(RelayedMessage):
    """WebRTC answer.

    Attributes:
        target_id: ID of the destination peer.
        sdp: Session description, forwarded verbatim.
        sender_id: ID of the source peer, set by the server.
    """

    target_id: str
    sdp: Any
    sender_id: str | None = None
    message_type: str = MessageType.answer.name


@dataclasses.dataclass
class IceCandidate(RelayedMessage):
    """WebRTC ICE candidate.

    Attributes:
        target_id: ID of the destination peer.
        candidate: ICE candidate, forwarded verbatim.
        sender_id: ID of the source peer, set by the server.
    """

    target_id: str
    candidate: Any
    sender_id: str | None = None
    message_type: str = MessageType.ice_candidate.name


@dataclasses.dataclass
class ChatMessage(RelayedMessage):
    """Text chat message.

    Attributes:
        target_id: ID of the destination peer.
        content: Message text.
        message_id: Optional client-assigned message ID.
        timestamp: Optional client-assigned timestamp.
        sender_id: ID of the source peer, set by the server.
    """

    target_id: str
    content: str
    message_id: str | None = None
    timestamp: str | None = None
    sender_id: str | None = None
    message_type: str = MessageType.message.name


@dataclasses.dataclass
class CallInvite(RelayedMessage):
    """Ring the target peer."""

    target_id: str
    sender_id: str | None = None
    message_type: str = MessageType.call_invite.name


@dataclasses.dataclass
class CallAccept(RelayedMessage):
    """Accept a call from the target peer."""

    target_id: str
    sender_id: str | None = None
    message_type: str = MessageType.call_accept.name


@dataclasses.dataclass
class CallReject(RelayedMessage):
    """Reject a call from the target peer."""

    target_id: str
    sender_id: str | None = None
    message_type: str = MessageType.call_reject.name


@dataclasses.dataclass
class CallEnd(RelayedMessage):
    """Hang up the call with the target peer.

    Delivered to the target as [`CallEnded`][peerlink.messages.CallEnded].
    """

    target_id: str
    message_type: str = MessageType.call_end.name

    def forwarded(self, sender_id: str) -> Message:
        """Get the form of this message delivered to the target peer."""
        return CallEnded(sender_id=sender_id)


@dataclasses.dataclass
class CallEnded(Message):
    """The peer `sender_id` hung up."""

    sender_id: str
    message_type: str = MessageType.call_ended.name


@dataclasses.dataclass
class MarkRead(RelayedMessage):
    """Mark all messages received from the target peer as read.

    Delivered to the target as
    [`MessagesRead`][peerlink.messages.MessagesRead].
    """

    target_id: str
    message_type: str = MessageType.mark_read.name

    def forwarded(self, sender_id: str) -> Message:
        """Get the form of this message delivered to the target peer."""
        return MessagesRead(reader_id=sender_id)


@dataclasses.dataclass
class MessagesRead(Message):
    """The peer `reader_id` read the messages sent to it."""

    reader_id: str
    message_type: str = MessageType.messages_read.name


@dataclasses.dataclass
class PeersList(Message):
    """Presence view of the peers visible to the receiving peer.

    The view may include the receiving peer itself. Clients are
    responsible for excluding their own ID when rendering the list.

    Attributes:
        peers: Sequence of `{'peer_id': ...}` objects.
    """

    peers: list[dict[str, str]] = dataclasses.field(default_factory=list)
    message_type: str = MessageType.peers_list.name

    @property
    def peer_ids(self) -> list[str]:
        """IDs of the peers in the view."""
        return [peer['peer_id'] for peer in self.peers]


@dataclasses.dataclass
class AuthError(Message):
    """Registration was rejected. The connection is closed after this."""

    reason: str
    message_type: str = MessageType.auth_error.name


@dataclasses.dataclass
class InviteError(Message):
    """An invite link join failed."""

    reason: str
    message_type: str = MessageType.invite_error.name


@dataclasses.dataclass
class InviteSuccess(Message):
    """An invite link join succeeded."""

    master_id: str
    message_type: str = MessageType.invite_success.name


@dataclasses.dataclass
class NewInvitee(Message):
    """Sent to a master when a peer joins through its invite link."""

    invitee_id: str
    message_type: str = MessageType.new_invitee.name


@dataclasses.dataclass
class MasterConnected(Message):
    """Sent to an invitee once it is connected to its master."""

    master_id: str
    message_type: str = MessageType.master_connected.name


@dataclasses.dataclass
class InviteTargetOffline(Message):
    """The target of a call invite is not online."""

    target_id: str
    message_type: str = MessageType.invite_target_offline.name


INBOUND_MESSAGE_TYPES: tuple[type[Message], ...] = (
    RegisterRequest,
    InviteJoinRequest,
    Offer,
    Answer,
    IceCandidate,
    ChatMessage,
    CallInvite,
    CallAccept,
    CallReject,
    CallEnd,
    MarkRead,
)
"""Message types a peer may send to the server."""


class MessageError(Exception):
    """Base exception type for messages."""

    pass


class MessageDecodeError(MessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass


def _check_str_fields(message: Message) -> None:
    # Annotations are strings because of the __future__ import.
    for field in dataclasses.fields(message):
        value = getattr(message, field.name)
        if field.type == 'str' and not isinstance(value, str):
            raise MessageDecodeError(
                f'Field {field.name} of {type(message).__name__} must be a '
                f'string but got {type(value).__name__}.',
            )
        if (
            field.type == 'str | None'
            and value is not None
            and not isinstance(value, str)
        ):
            raise MessageDecodeError(
                f'Field {field.name} of {type(message).__name__} must be a '
                f'string or null but got {type(value).__name__}.',
            )


def decode_message(message: str) -> Message:
    """Decode JSON string into the correct message type.

    Args:
        message: JSON string to decode.

    Returns:
        Parsed message.

    Raises:
        MessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise MessageDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise MessageDecodeError('Message is not a JSON object.')

    try:
        message_type_name = data.pop('message_type')
    except KeyError as e:
        raise MessageDecodeError(
            'Message does not contain a message_type key.',
        ) from e

    try:
        message_type = getattr(
            sys.modules[__name__],
            MessageType[message_type_name].value,
        )
    except (AttributeError, KeyError, TypeError) as e:
        raise MessageDecodeError(
            'The message is of an unknown message type: '
            f'{message_type_name}.',
        ) from e

    try:
        decoded = message_type(**data)
    except TypeError as e:
        raise MessageDecodeError(
            f'Failed to convert message to {message_type.__name__}: {e}',
        ) from e

    _check_str_fields(decoded)
    return decoded


def encode_message(message: Message) -> str:
    """Encode message as JSON string.

    Args:
        message: Message to JSON encode.

    Raises:
        MessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, Message):
        raise MessageEncodeError(
            f'Message is not an instance of {Message.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data = dataclasses.asdict(message)

    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise MessageEncodeError('Error encoding message.') from e
