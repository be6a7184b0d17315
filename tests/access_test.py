from __future__ import annotations

from unittest import mock

import pytest

from peerlink.access import authorize
from peerlink.access import in_trust_scope
from peerlink.registry import ConnectionRegistry
from peerlink.trust import TrustLedger

ONLINE = ('alice', 'bob', 'carol', 'dave', 'erin')


@pytest.fixture()
def ledger() -> TrustLedger:
    # alice is the master of carol and dave, bob and erin are regular
    registry: ConnectionRegistry[mock.MagicMock] = ConnectionRegistry()
    for peer_id in ('alice', 'bob', 'erin'):
        registry.register(peer_id, mock.MagicMock())
    ledger = TrustLedger(registry)
    ledger.join('alice', 'carol', mock.MagicMock())
    ledger.join('alice', 'dave', mock.MagicMock())
    return ledger


@pytest.mark.parametrize('target', ONLINE)
def test_invitee_reaches_only_master(ledger: TrustLedger, target: str) -> None:
    assert authorize(ledger, 'carol', target) == (target == 'alice')


@pytest.mark.parametrize('target', ONLINE)
def test_master_reaches_self_and_invitees(
    ledger: TrustLedger,
    target: str,
) -> None:
    expected = target in ('alice', 'carol', 'dave')
    assert authorize(ledger, 'alice', target) == expected


@pytest.mark.parametrize('target', ONLINE)
def test_regular_reaches_everyone(ledger: TrustLedger, target: str) -> None:
    assert authorize(ledger, 'bob', target)


def test_offline_target_denied(ledger: TrustLedger) -> None:
    assert in_trust_scope(ledger, 'bob', 'unknown')
    assert not authorize(ledger, 'bob', 'unknown')


def test_master_disconnect_revokes_invitee_access(ledger: TrustLedger) -> None:
    ledger.registry.remove(ledger.registry.resolve('alice'))
    ledger.on_disconnect('alice')

    assert not authorize(ledger, 'carol', 'alice')
    # carol falls back to the regular role
    assert authorize(ledger, 'carol', 'bob')
    assert authorize(ledger, 'carol', 'dave')


def test_in_trust_scope_ignores_presence(ledger: TrustLedger) -> None:
    assert in_trust_scope(ledger, 'carol', 'alice')
    assert not in_trust_scope(ledger, 'carol', 'bob')
    assert in_trust_scope(ledger, 'alice', 'alice')
    assert not in_trust_scope(ledger, 'alice', 'unknown')


def test_authorize_is_not_cached(ledger: TrustLedger) -> None:
    assert not authorize(ledger, 'carol', 'bob')
    ledger.on_disconnect('carol')
    assert authorize(ledger, 'carol', 'bob')
    ledger.join('alice', 'carol', mock.MagicMock())
    assert not authorize(ledger, 'carol', 'bob')


def test_regular_reaches_hidden_invitee(ledger: TrustLedger) -> None:
    # Invitees are hidden from the presence view of regular peers but the
    # regular role is not restricted.
    assert ledger.is_invitee('carol')
    assert authorize(ledger, 'bob', 'carol') is True
    assert authorize(ledger, 'erin', 'dave') is True
