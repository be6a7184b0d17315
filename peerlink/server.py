"""Signaling server for presence and WebRTC negotiation between peers.

The signaling server is a lightweight server accessible by all peers that
tracks who is online, filters what each peer can see and reach according
to invite link trust relationships, and forwards session descriptions,
ICE candidates, chat messages, and call lifecycle events between peers.
Media never flows through the server.

All state is owned by a single
[`SignalingServer`][peerlink.server.SignalingServer] and mutated only from
coroutines running on one event loop. Every mutation
completes before the handler yields to the loop, so each inbound message
is applied atomically with respect to all other connections. Outbound
messages are queued per connection and written by background tasks, so a
peer that stops reading never stalls the handling of other peers.
"""
from __future__ import annotations

import asyncio
import logging
import sys

import websockets.exceptions
from websockets.asyncio.server import ServerConnection

from peerlink.access import authorize
from peerlink.access import in_trust_scope
from peerlink.authenticate import Authenticator
from peerlink.exceptions import BadRequestError
from peerlink.exceptions import ForbiddenError
from peerlink.exceptions import InviteJoinError
from peerlink.exceptions import SignalingServerError
from peerlink.exceptions import UnauthorizedError
from peerlink.messages import AuthError
from peerlink.messages import CallInvite
from peerlink.messages import decode_message
from peerlink.messages import encode_message
from peerlink.messages import INBOUND_MESSAGE_TYPES
from peerlink.messages import InviteError
from peerlink.messages import InviteJoinRequest
from peerlink.messages import InviteSuccess
from peerlink.messages import InviteTargetOffline
from peerlink.messages import MasterConnected
from peerlink.messages import Message
from peerlink.messages import MessageDecodeError
from peerlink.messages import MessageEncodeError
from peerlink.messages import NewInvitee
from peerlink.messages import RegisterRequest
from peerlink.messages import RelayedMessage
from peerlink.presence import PresenceBroadcaster
from peerlink.registry import ConnectionRegistry
from peerlink.registry import Peer
from peerlink.trust import TrustLedger
from peerlink.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


class SignalingServer:
    """WebRTC signaling and presence server.

    Peers register under a self-chosen ID, or join another peer's invite
    link, and receive a filtered list of online peers whenever the set of
    peers or their trust relationships change. Signaling messages are
    forwarded to their target only if the sender is allowed to reach it.
    Denied messages and messages to offline peers are dropped without
    telling the sender.

    The server is built on websockets and designed to be served using
    [`serve()`][peerlink.run.serve].

    Args:
        authenticator: Authenticator used to check the credential of
            registering peers.
        max_message_bytes: Optional maximum size of client messages in bytes.
            Clients that send oversized messages will have their connections
            closed. Note that message size is computed using
            [`sys.getsizeof()`][sys.getsizeof] so will also include the
            PyObject overhead.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        max_message_bytes: int | None = None,
    ) -> None:
        self._authenticator = authenticator
        self._max_message_bytes = max_message_bytes
        self._registry: ConnectionRegistry[ServerConnection] = (
            ConnectionRegistry()
        )
        self._ledger = TrustLedger(self._registry)
        self._presence: PresenceBroadcaster[ServerConnection] = (
            PresenceBroadcaster(self._registry, self._ledger)
        )
        self._outboxes: dict[ServerConnection, asyncio.Queue[str]] = {}
        self._writers: dict[ServerConnection, asyncio.Task[None]] = {}

    @property
    def authenticator(self) -> Authenticator:
        """Peer authenticator."""
        return self._authenticator

    @property
    def registry(self) -> ConnectionRegistry[ServerConnection]:
        """Registry of connected peers."""
        return self._registry

    @property
    def ledger(self) -> TrustLedger:
        """Invite link trust relationships."""
        return self._ledger

    async def send(
        self,
        websocket: ServerConnection,
        message: Message,
    ) -> None:
        """Send message on the socket and wait for it to be written.

        Sending is best effort. Failures are logged and never propagate to
        the caller. Messages to other peers should use
        [`deliver()`][peerlink.server.SignalingServer.deliver] instead so a
        slow reader never blocks the caller.

        Args:
            websocket: Connection to send the message on.
            message: Message to encode and send.
        """
        try:
            message_str = encode_message(message)
        except MessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        try:
            await websocket.send(message_str)
        except websockets.exceptions.ConnectionClosed:
            logger.warning(
                'Connection closed while attempting to send '
                f'{type(message).__name__} message',
            )

    def deliver(self, websocket: ServerConnection, message: Message) -> None:
        """Queue a message for delivery on a connection.

        Each connection has its own outbound queue drained by a background
        writer task, so this returns immediately regardless of how fast the
        receiving peer reads. Messages to one connection are written in the
        order they were queued.

        Args:
            websocket: Connection to deliver the message on.
            message: Message to encode and deliver.
        """
        try:
            message_str = encode_message(message)
        except MessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        outbox = self._outboxes.get(websocket)
        if outbox is None:
            outbox = asyncio.Queue()
            self._outboxes[websocket] = outbox
            self._writers[websocket] = spawn_guarded_background_task(
                self._write_outbox,
                websocket,
                outbox,
                name=f'signaling-server-writer-{websocket.remote_address}',
            )
        outbox.put_nowait(message_str)

    async def _write_outbox(
        self,
        websocket: ServerConnection,
        outbox: asyncio.Queue[str],
    ) -> None:
        while True:
            message_str = await outbox.get()
            try:
                await websocket.send(message_str)
            except websockets.exceptions.ConnectionClosed:
                logger.debug(
                    f'Dropped queued message to {websocket.remote_address} '
                    'because the connection is closed',
                )
            finally:
                outbox.task_done()

    async def _close_outbox(self, websocket: ServerConnection) -> None:
        self._outboxes.pop(websocket, None)
        writer = self._writers.pop(websocket, None)
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    async def flush(self) -> None:
        """Wait until every queued message has been written."""
        await asyncio.gather(
            *(outbox.join() for outbox in list(self._outboxes.values())),
        )

    async def close(self) -> None:
        """Stop the writer tasks of all connections.

        Messages that are still queued are discarded.
        """
        for websocket in list(self._writers):
            await self._close_outbox(websocket)

    def broadcast_presence(self) -> None:
        """Queue the current presence view of every connected peer."""
        for peer, view in self._presence.snapshot():
            self.deliver(peer.handle, view)

    def _release_previous(
        self,
        previous: Peer[ServerConnection] | None,
        peer_id: str,
    ) -> None:
        # A connection carries one peer ID. Rebinding it under a new ID
        # retires the old ID as if it disconnected.
        if previous is not None and previous.peer_id != peer_id:
            logger.info(
                f'Connection of peer {previous.peer_id} re-registered as '
                f'{peer_id}',
            )
            self._ledger.on_disconnect(previous.peer_id)

    async def register(
        self,
        websocket: ServerConnection,
        request: RegisterRequest,
    ) -> None:
        """Register a peer with the server.

        A later registration under the same ID supersedes the earlier
        connection without notifying it.

        Args:
            websocket: Connection of the peer wanting to register.
            request: Registration request message.

        Raises:
            BadRequestError: if the peer ID is empty.
            UnauthorizedError: if the credential is rejected by the
                authenticator.
        """
        if not request.peer_id:
            raise BadRequestError('Peer ID cannot be empty.')

        try:
            self.authenticator.authenticate(
                request.peer_id,
                request.credential,
            )
        except UnauthorizedError as e:
            logger.warning(
                'Failed to authenticate registration request from '
                f'{websocket.remote_address}. {e.__class__.__name__}: {e}',
            )
            raise

        previous = self._registry.get_peer_by_handle(websocket)
        peer = self._registry.register(request.peer_id, websocket)
        self._release_previous(previous, request.peer_id)
        logger.info(f'Registered peer: {peer}')

        self.broadcast_presence()

    async def invite_join(
        self,
        websocket: ServerConnection,
        request: InviteJoinRequest,
    ) -> None:
        """Register a peer as the invitee of a master.

        The invitee is told it joined and is connected to its master, the
        master is told about its new invitee, and presence views are
        pushed to everyone.

        Args:
            websocket: Connection of the joining peer.
            request: Invite link join request.

        Raises:
            BadRequestError: if the master or invitee ID is empty.
            MasterNotFoundError: if the master is not connected.
            InviteJoinError: if the join violates the trust model.
        """
        if not request.master_id or not request.invitee_id:
            raise BadRequestError('Master and invitee IDs cannot be empty.')

        previous = self._registry.get_peer_by_handle(websocket)
        self._ledger.join(request.master_id, request.invitee_id, websocket)
        self._release_previous(previous, request.invitee_id)
        master = self._registry.resolve(request.master_id)
        assert master is not None

        self.deliver(websocket, InviteSuccess(master_id=request.master_id))
        self.deliver(master, NewInvitee(invitee_id=request.invitee_id))
        self.deliver(websocket, MasterConnected(master_id=request.master_id))
        self.broadcast_presence()

    async def unregister(
        self,
        websocket: ServerConnection,
        expected: bool,
    ) -> None:
        """Unregister the peer bound to a connection.

        Messages still queued for the connection are discarded. Nothing
        else happens if no peer is bound to the connection, e.g., because
        the connection never registered or was superseded.

        Args:
            websocket: Connection that closed.
            expected: If the connection was closed intentionally or due to an
                error.
        """
        await self._close_outbox(websocket)

        peer_id = self._registry.remove(websocket)
        if peer_id is None:
            return
        self._ledger.on_disconnect(peer_id)

        reason = 'ok' if expected else 'unexpected'
        logger.info(f'Unregistered peer {peer_id} for {reason} reason')

        self.broadcast_presence()

    async def relay(
        self,
        sender: Peer[ServerConnection],
        message: RelayedMessage,
    ) -> None:
        """Forward a message from a peer to its target.

        The message is dropped if the sender may not reach the target or
        the target is offline. The only reply to the sender is
        [`InviteTargetOffline`][peerlink.messages.InviteTargetOffline] when
        it rings an offline peer it is allowed to reach.

        Args:
            sender: Peer that sent the message.
            message: Message to forward.
        """
        target_id = message.target_id
        kind = type(message).__name__

        if authorize(self._ledger, sender.peer_id, target_id):
            target = self._registry.resolve(target_id)
            assert target is not None
            logger.debug(
                f'Transmitting {kind} from {sender.peer_id} to {target_id}',
            )
            self.deliver(target, message.forwarded(sender.peer_id))
        elif not in_trust_scope(self._ledger, sender.peer_id, target_id):
            logger.debug(
                f'Dropped {kind} from {sender.peer_id} to {target_id} '
                'because the target is outside the trust scope of the sender',
            )
        else:
            logger.warning(
                f'Peer {sender.peer_id} attempting to send {kind} to '
                f'unknown peer {target_id}',
            )
            if isinstance(message, CallInvite):
                self.deliver(
                    sender.handle,
                    InviteTargetOffline(target_id=target_id),
                )

    async def _process_message(
        self,
        websocket: ServerConnection,
        message: Message,
    ) -> None:
        # Dispatches the message to the correct method depending on the type
        if isinstance(message, RegisterRequest):
            await self.register(websocket, message)
        elif isinstance(message, InviteJoinRequest):
            await self.invite_join(websocket, message)
        elif isinstance(message, RelayedMessage):
            sender = self._registry.get_peer_by_handle(websocket)
            if sender is None:
                logger.warning(
                    f'Unregistered client at {websocket.remote_address} '
                    f'attempting to send {type(message).__name__} to '
                    f'{message.target_id} without being registered.',
                )
                raise ForbiddenError(
                    'Client has not registered with the signaling server.',
                )
            await self.relay(sender, message)
        else:
            raise AssertionError('Unreachable.')

    async def handler(self, websocket: ServerConnection) -> None:  # noqa: C901
        """Websocket server connection handler.

        The handler will close the connection for the following reasons.

        - An unexpected message type is received (code 4000).
        - The peer fails authentication (code 4001).
        - The client signals before registering (code 4002).
        - The client sends a message larger than the allowed size (code 4003).

        The peer bound to the connection is unregistered once the
        connection closes for any reason.

        Args:
            websocket: Websocket connection with the client.
        """
        while True:
            try:
                message_str = await websocket.recv()
            except websockets.exceptions.ConnectionClosedOK:
                await self.unregister(websocket, expected=True)
                break
            except websockets.exceptions.ConnectionClosedError:
                await self.unregister(websocket, expected=False)
                break

            if (
                self._max_message_bytes is not None
                and sys.getsizeof(message_str) > self._max_message_bytes
            ):
                logger.warning(
                    f'Client at {websocket.remote_address} sent message with '
                    f'size {sys.getsizeof(message_str)} bytes which exceeds '
                    f'the max configured size of {self._max_message_bytes} '
                    'bytes. Connection closed with error code 4003',
                )
                await websocket.close(
                    4003,
                    reason='Message length exceeds limit.',
                )
                continue

            try:
                if isinstance(message_str, bytes):
                    raise MessageDecodeError(
                        'Got message as bytes but expected str.',
                    )
                message = decode_message(message_str)
                if not isinstance(message, INBOUND_MESSAGE_TYPES):
                    raise MessageDecodeError(
                        f'Clients cannot send {type(message).__name__} '
                        'messages.',
                    )
            except MessageDecodeError as e:
                logger.error(
                    'Closing websocket because deserialization error was '
                    'caught on message received from '
                    f'{websocket.remote_address}. {e}',
                )
                await websocket.close(4000, reason='Unknown message type.')
                continue

            try:
                await self._process_message(websocket, message)
            except UnauthorizedError as e:
                await self.send(websocket, AuthError(reason=str(e)))
                await websocket.close(
                    code=4001,
                    reason='UnauthorizedError: Authentication failed.',
                )
            except ForbiddenError as e:
                await websocket.close(
                    code=4002,
                    reason=f'{e.__class__.__name__}: {e}',
                )
            except InviteJoinError as e:
                logger.warning(
                    f'Invite link join from {websocket.remote_address} '
                    f'failed. {e.__class__.__name__}: {e}',
                )
                self.deliver(websocket, InviteError(reason=str(e)))
            except SignalingServerError as e:
                logger.error(
                    f'Closing websocket of {websocket.remote_address} after '
                    f'request failed. {e.__class__.__name__}: {e}',
                )
                await websocket.close(code=4000, reason='Bad request.')
