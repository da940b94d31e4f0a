"""
Tests for the simulated chain client, memo matching and client selection.
"""

from __future__ import annotations

import json
import sys
from decimal import Decimal

import pytest
from solders.keypair import Keypair

from solxen_bridge.core.exceptions import RejectedChainError
from solxen_bridge.minter import (
    ConfirmationStatus,
    SimulatedChainClient,
    build_chain_client,
    memo_for_burn,
)
from solxen_bridge.minter.chain_client import memo_matches
from solxen_bridge.minter.solana_client import SolanaChainClient

VALID_WALLET = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"


def test_simulated_mint_confirms_immediately():
    client = SimulatedChainClient()
    ref = client.submit_mint(VALID_WALLET, Decimal("100"), memo=memo_for_burn("B1"))
    assert ref.startswith("sim")
    assert client.query_confirmation(ref).status is ConfirmationStatus.CONFIRMED
    by_memo = client.query_confirmation(burn_id="B1")
    assert by_memo.status is ConfirmationStatus.CONFIRMED
    assert by_memo.tx_reference == ref
    assert client.query_confirmation(burn_id="B2").status is ConfirmationStatus.NOT_FOUND


def test_simulated_signatures_are_unique_per_submission():
    client = SimulatedChainClient()
    refs = {client.submit_mint(VALID_WALLET, Decimal("1"), memo=memo_for_burn("B1")) for _ in range(5)}
    assert len(refs) == 5


def test_simulated_reports_signature_before_returning():
    client = SimulatedChainClient()
    signed = []
    ref = client.submit_mint(
        VALID_WALLET, Decimal("1"), memo=memo_for_burn("B1"), on_signed=lambda sig, bh: signed.append(sig)
    )
    assert signed == [ref]


def test_simulated_rejects_bad_input():
    client = SimulatedChainClient(token_decimals=6)
    with pytest.raises(RejectedChainError):
        client.submit_mint("not-an-address", Decimal("1"))
    with pytest.raises(RejectedChainError):
        client.submit_mint(VALID_WALLET, Decimal("0.0000001"))


def test_memo_matching():
    assert memo_matches("[18] solxen-bridge:abc", "abc")
    assert memo_matches("solxen-bridge:abc", "abc")
    assert memo_matches("[5] hello; [18] solxen-bridge:abc", "abc")
    assert not memo_matches("[19] solxen-bridge:abcd", "abc")
    assert not memo_matches(None, "abc")


def test_build_chain_client_dry_run_is_simulated(settings):
    client = build_chain_client(settings.with_overrides(dry_run=True))
    assert isinstance(client, SimulatedChainClient)


def test_dry_run_does_not_load_the_solana_client(settings, monkeypatch):
    monkeypatch.setitem(sys.modules, "solxen_bridge.minter.solana_client", None)
    client = build_chain_client(settings.with_overrides(dry_run=True))
    assert isinstance(client, SimulatedChainClient)


def test_build_chain_client_without_keypair_is_simulated(settings):
    client = build_chain_client(settings)
    assert isinstance(client, SimulatedChainClient)


def test_build_chain_client_with_keypair_file(settings, tmp_path):
    keypair = Keypair()
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(keypair))), encoding="utf-8")
    client = build_chain_client(settings.with_overrides(keypair_path=path))
    assert isinstance(client, SolanaChainClient)
    assert client.authority == keypair.pubkey()
