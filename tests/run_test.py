from __future__ import annotations

import asyncio
import logging
import multiprocessing
import os
import pathlib
import ssl
import subprocess
import time
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest
import websockets
from websockets.asyncio.client import connect

from peerlink.authenticate import NullAuthenticator
from peerlink.config import AuthConfig
from peerlink.config import ServingConfig
from peerlink.messages import AuthError
from peerlink.messages import PeersList
from peerlink.messages import RegisterRequest
from peerlink.run import cli
from peerlink.run import periodic_peer_logger
from peerlink.run import serve
from peerlink.server import SignalingServer
from testing.peers import recv
from testing.peers import send
from testing.ssl import SSLContextFixture
from testing.utils import open_port


@pytest.mark.asyncio()
async def test_periodic_peer_logger(caplog) -> None:
    caplog.set_level(logging.INFO)

    server = SignalingServer(NullAuthenticator())
    server.registry.register('alice', mock.MagicMock())

    task = periodic_peer_logger(server, 0.001)
    await asyncio.sleep(0.01)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    assert any(
        [
            'Connected peers: 1 (masters: 0)' in record.message
            and record.levelname == 'INFO'
            for record in caplog.records
        ],
    )
    assert any(
        [
            'peer_id=alice' in record.message and record.levelname == 'INFO'
            for record in caplog.records
        ],
    )


def test_invoke() -> None:
    runner = click.testing.CliRunner()
    with mock.patch('peerlink.run.serve', AsyncMock()) as mock_serve:
        runner.invoke(cli)
        mock_serve.assert_awaited_once()

    config = mock_serve.await_args.args[0]
    assert config.port == 3001
    assert config.auth.method is None


def test_invoke_and_override_defaults(tmp_path: pathlib.Path) -> None:
    tmp_dir = os.path.join(tmp_path, 'log-dir')
    assert not os.path.isdir(tmp_dir)

    async def _mock_serve(config: ServingConfig) -> None:
        assert config.host == 'test-host'
        assert config.port == 1234
        assert config.logging.log_dir == str(tmp_dir)
        assert config.logging.default_level == logging.WARNING
        assert config.auth.method == 'shared-secret'
        assert config.auth.kwargs == {'secret': 'hunter2'}

    options: list[str] = []
    options += ['--host', 'test-host']
    options += ['--port', '1234']
    options += ['--log-dir', str(tmp_dir)]
    options += ['--log-level', 'WARNING']
    options += ['--secret', 'hunter2']

    runner = click.testing.CliRunner()
    with mock.patch(
        'peerlink.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve:
        result = runner.invoke(cli, options)

    assert result.exit_code == 0, result.output
    mock_serve.assert_awaited_once()
    assert os.path.isdir(tmp_dir)


def test_invoke_with_config_file(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'server.toml'
    with open(filepath, 'w') as f:
        f.write('port = 4321\n[auth]\nmethod = "shared-secret"\n')
        f.write('[auth.kwargs]\nsecret = "from-file"\n')

    runner = click.testing.CliRunner()
    with mock.patch('peerlink.run.serve', AsyncMock()) as mock_serve:
        result = runner.invoke(cli, ['--config', str(filepath)])

    assert result.exit_code == 0, result.output
    config = mock_serve.await_args.args[0]
    assert config.port == 4321
    assert config.auth.kwargs == {'secret': 'from-file'}


def test_invoke_secret_from_environment() -> None:
    runner = click.testing.CliRunner()
    with mock.patch('peerlink.run.serve', AsyncMock()) as mock_serve:
        result = runner.invoke(cli, env={'PEERLINK_SECRET': 'from-env'})

    assert result.exit_code == 0, result.output
    config = mock_serve.await_args.args[0]
    assert config.auth.method == 'shared-secret'
    assert config.auth.kwargs == {'secret': 'from-env'}


def test_logging_config(tmp_path: pathlib.Path) -> None:
    with subprocess.Popen(
        [
            'peerlink-server',
            '--port',
            str(open_port()),
            '--log-dir',
            str(tmp_path),
            '--log-level',
            'INFO',
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        universal_newlines=True,
    ) as server_handle:
        # Wait for server to log that it is listening
        assert server_handle.stdout is not None
        for line in server_handle.stdout:  # pragma: no cover
            if 'Signaling server listening on' in line:
                break

        server_handle.terminate()
        server_handle.wait(1)

    sleep_time = 0.01
    max_wait_time = 1.0
    waited_time = 0.0
    while waited_time <= max_wait_time:  # pragma: no branch
        logs = [
            f
            for f in os.listdir(tmp_path)
            if os.path.isfile(os.path.join(tmp_path, f))
        ]
        if len(logs) >= 1:
            for log in logs:
                with open(os.path.join(tmp_path, log)) as f:
                    assert 'DEBUG' not in f.read()
            break
        elif waited_time >= max_wait_time:  # pragma: no cover
            raise TimeoutError('Timeout waiting for log file to be written.')
        else:  # pragma: no cover
            time.sleep(sleep_time)
            waited_time += sleep_time


def _serve(config: ServingConfig) -> None:
    asyncio.run(serve(config))


@pytest.mark.parametrize('use_ssl', (True, False))
@pytest.mark.timeout(5)
@pytest.mark.asyncio()
async def test_serve_in_subprocess(
    use_ssl: bool,
    ssl_context: SSLContextFixture,
) -> None:
    config = ServingConfig(host='127.0.0.1', port=open_port())

    client_ssl: ssl.SSLContext | None = None
    if use_ssl:
        config.certfile = ssl_context.certfile
        config.keyfile = ssl_context.keyfile
        client_ssl = ssl.create_default_context()
        client_ssl.check_hostname = False
        client_ssl.verify_mode = ssl.CERT_NONE

    prefix = 'wss://' if use_ssl else 'ws://'
    address = f'{prefix}{config.host}:{config.port}'

    process = multiprocessing.Process(target=_serve, args=(config,))
    process.start()

    while True:
        try:
            websocket = await connect(address, ssl=client_ssl)
        except OSError:  # pragma: no cover
            await asyncio.sleep(0.01)
        else:
            # Coverage doesn't detect the singular break but it does
            # get executed to break from the loop
            break  # pragma: no cover

    await send(websocket, RegisterRequest('alice'))
    response = await recv(websocket)
    assert isinstance(response, PeersList)
    assert response.peer_ids == ['alice']

    process.terminate()

    with pytest.raises(websockets.exceptions.ConnectionClosedOK):
        await websocket.recv()

    process.join()

    await websocket.close()


@pytest.mark.timeout(5)
@pytest.mark.asyncio()
async def test_serve_with_shared_secret() -> None:
    config = ServingConfig(
        host='127.0.0.1',
        port=open_port(),
        auth=AuthConfig(method='shared-secret', kwargs={'secret': 'abc'}),
    )
    address = f'ws://{config.host}:{config.port}'

    process = multiprocessing.Process(target=_serve, args=(config,))
    process.start()

    while True:
        try:
            rejected = await connect(address)
        except OSError:  # pragma: no cover
            await asyncio.sleep(0.01)
        else:
            break  # pragma: no cover

    await send(rejected, RegisterRequest('mallory', 'guess'))
    assert isinstance(await recv(rejected), AuthError)
    await rejected.wait_closed()
    assert rejected.close_code == 4001

    async with connect(address) as accepted:
        await send(accepted, RegisterRequest('alice', 'abc'))
        response = await recv(accepted)
        assert isinstance(response, PeersList)
        assert response.peer_ids == ['alice']

    process.terminate()
    process.join()
