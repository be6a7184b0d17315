"""CLI and serving functions for running a signaling server."""
from __future__ import annotations

import asyncio
import datetime
import logging
import logging.handlers
import os
import pprint
import signal
import ssl
import sys

import click
from websockets.asyncio.server import serve as websockets_serve

from peerlink.authenticate import get_authenticator
from peerlink.config import ServingConfig
from peerlink.server import SignalingServer
from peerlink.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


def periodic_peer_logger(
    server: SignalingServer,
    interval: float = 60,
    limit: float | None = 60,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Create an asyncio task which logs currently connected peers.

    Args:
        server: Signaling server instance to log connected peers of.
        interval: Seconds between logging connected peers.
        limit: Only log detailed peer list if the number of peers is
            less than this number.
        level: Logging level.

    Returns:
        Asyncio task.
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            peers = server.registry.get_peers()
            peers = sorted(peers, key=lambda peer: peer.peer_id)
            message = (
                f'Connected peers: {len(peers)} '
                f'(masters: {len(server.ledger.masters())})'
            )
            if limit is not None and 0 < len(peers) < limit:
                peers_repr = '\n'.join(repr(peer) for peer in peers)
                message = f'{message}\n{peers_repr}'
            logger.log(level, message)

    return spawn_guarded_background_task(
        _log,
        name='signaling-server-peer-logger',
    )


async def serve(config: ServingConfig) -> None:
    """Run the signaling server.

    Initializes a [`SignalingServer`][peerlink.server.SignalingServer]
    and starts a websocket server listening for new connections
    and incoming messages.

    Note:
        This function will not configure any logging. Configuring logging
        according to
        [`ServingConfig.logging`][peerlink.config.ServingConfig]
        is the responsibility of the caller.

    Args:
        config: Serving configuration.
    """
    authenticator = get_authenticator(config.auth)
    server = SignalingServer(
        authenticator,
        max_message_bytes=config.max_message_bytes,
    )

    # Set the stop condition when receiving SIGINT (ctrl-C) and SIGTERM.
    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    ssl_context: ssl.SSLContext | None = None
    if config.certfile is not None:
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(config.certfile, keyfile=config.keyfile)

    peer_logger_task: asyncio.Task[None] | None = None
    if config.logging.current_peer_interval is not None:  # pragma: no branch
        level = (
            config.logging.default_level
            if isinstance(config.logging.default_level, int)
            else logging.getLevelName(config.logging.default_level)
        )
        peer_logger_task = periodic_peer_logger(
            server,
            config.logging.current_peer_interval,
            config.logging.current_peer_limit,
            level=level,
        )

    config_repr = pprint.pformat(config, indent=2)
    logger.info(f'Signaling serving configuration:\n{config_repr}')

    async with websockets_serve(
        server.handler,
        config.host,
        config.port,
        logger=None,
        ssl=ssl_context,
    ):
        logger.info(f'Signaling server listening on port {config.port}')
        logger.info('Use ctrl-C to stop')
        await stop

    await server.close()

    if peer_logger_task is not None:  # pragma: no branch
        peer_logger_task.cancel()
        try:
            await peer_logger_task
        except asyncio.CancelledError:
            pass

    loop.remove_signal_handler(signal.SIGINT)
    loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Signaling server shutdown')


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option('--port', type=int, metavar='PORT', help='Port to bind to.')
@click.option('--log-dir', metavar='PATH', help='Logging directory.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
@click.option(
    '--secret',
    envvar='PEERLINK_SECRET',
    metavar='SECRET',
    help='Shared secret peers must present to register.',
)
def cli(
    config_path: str | None,
    host: str | None,
    port: int | None,
    log_dir: str | None,
    log_level: str | None,
    secret: str | None,
) -> None:
    """Run a signaling server instance.

    The signaling server tracks which peers are online and forwards
    WebRTC negotiation, chat, and call messages between them. If no
    configuration file is provided, a default configuration will be created
    from [`ServingConfig()`][peerlink.config.ServingConfig].
    The remaining CLI options will override the options provided in the
    configuration object.
    """
    config = (
        ServingConfig()
        if config_path is None
        else ServingConfig.from_toml(config_path)
    )

    # Override config with CLI options if given
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = logging.getLevelName(log_level.upper())
    if secret is not None:
        config.auth.method = 'shared-secret'
        config.auth.kwargs = {'secret': secret}

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.logging.log_dir is not None:
        os.makedirs(config.logging.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.logging.log_dir, 'server.log'),
                # Rotate logs Sunday at midnight
                when='W6',
                atTime=datetime.time(hour=0, minute=0, second=0),
            ),
        )

    logging.basicConfig(
        format=(
            '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: '
            '%(message)s'
        ),
        datefmt='%Y-%m-%d %H:%M:%S',
        level=config.logging.default_level,
        handlers=handlers,
    )

    logging.getLogger('websockets').setLevel(config.logging.websockets_level)

    asyncio.run(serve(config))
