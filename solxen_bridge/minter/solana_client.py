"""
X1 (Solana-compatible) chain client: mints solXEN with the mint authority keypair.

Each mint transaction holds three instructions:
  1. create the recipient's associated token account (idempotent)
  2. Token-2022 MintTo of the amount in base units
  3. a memo "solxen-bridge:<burn_id>" so the mint can be found by burn_id

Errors are classified for the executor: RPC transport problems, rate limits
and expired blockhashes are transient; everything else the node refuses is a
rejection.
"""

from __future__ import annotations

import json
import struct
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import base58
import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.transaction import Transaction

from solxen_bridge.config.env import mask_rpc_url
from solxen_bridge.core.exceptions import ConfigError, RejectedChainError, TransientChainError
from solxen_bridge.logging import get_logger
from solxen_bridge.migrator.conversion import to_base_units
from solxen_bridge.minter.chain_client import (
    ChainClient,
    ConfirmationResult,
    ConfirmationStatus,
    OnSigned,
    memo_matches,
)

logger = get_logger(__name__)

ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TuFmV3T8P9VPaKcT8ZkAF6")

# SPL token instruction tags
TOKEN_IX_MINT_TO = 7
ATA_IX_CREATE_IDEMPOTENT = 1

SIGNATURES_PAGE_LIMIT = 1000
MEMO_SCAN_MAX_PAGES = 5
LOW_BALANCE_LAMPORTS = 10_000_000  # 0.01 XNT

_TRANSIENT_MARKERS = (
    "blockhash not found",
    "blockhashnotfound",
    "node is behind",
    "node is unhealthy",
    "too many requests",
    "429",
    "timed out",
    "timeout",
    "service unavailable",
)
_ALREADY_PROCESSED_MARKERS = ("already been processed", "alreadyprocessed")


def load_mint_authority(private_key: str, keypair_path: Path | None) -> Keypair | None:
    """
    Load the mint authority keypair.

    MINT_AUTHORITY_PRIVATE_KEY (base58 or JSON array of 64 bytes) wins over the
    keypair file (Solana CLI JSON array). Returns None when neither is present.
    Raises ConfigError when a configured key cannot be parsed.
    """
    raw = (private_key or "").strip()
    if raw:
        if raw.startswith("["):
            try:
                arr = json.loads(raw)
                return Keypair.from_bytes(bytes(arr[:64]))
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                raise ConfigError("Invalid MINT_AUTHORITY_PRIVATE_KEY (JSON array)") from e
        try:
            return Keypair.from_bytes(base58.b58decode(raw))
        except Exception as e:
            logger.warning("mint_authority_load_failed", source="env", error=str(e))
            raise ConfigError("Invalid MINT_AUTHORITY_PRIVATE_KEY") from e

    if keypair_path is None or not Path(keypair_path).is_file():
        return None
    try:
        arr = json.loads(Path(keypair_path).read_text(encoding="utf-8"))
        return Keypair.from_bytes(bytes(arr[:64]))
    except (OSError, json.JSONDecodeError, TypeError, ValueError) as e:
        logger.warning("mint_authority_load_failed", source=str(keypair_path), error=str(e))
        raise ConfigError(f"Invalid keypair file: {keypair_path}") from e


def get_associated_token_address(owner: Pubkey, mint: Pubkey, token_program_id: Pubkey) -> Pubkey:
    """Derive ATA. Seeds: [owner, token_program, mint]."""
    ata, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program_id), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return ata


def build_create_ata_idempotent_instruction(
    payer: Pubkey, owner: Pubkey, mint: Pubkey, token_program_id: Pubkey
) -> Instruction:
    """CreateIdempotent: no-op when the account already exists."""
    ata = get_associated_token_address(owner, mint, token_program_id)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_program_id, is_signer=False, is_writable=False),
    ]
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        data=bytes([ATA_IX_CREATE_IDEMPOTENT]),
        accounts=accounts,
    )


def build_mint_to_instruction(
    mint: Pubkey, destination: Pubkey, authority: Pubkey, amount: int, token_program_id: Pubkey
) -> Instruction:
    """MintTo: tag u8 + amount u64 little-endian."""
    accounts = [
        AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(
        program_id=token_program_id,
        data=struct.pack("<BQ", TOKEN_IX_MINT_TO, amount),
        accounts=accounts,
    )


def build_memo_instruction(memo: str, signer: Pubkey) -> Instruction:
    return Instruction(
        program_id=MEMO_PROGRAM_ID,
        data=memo.encode("utf-8"),
        accounts=[AccountMeta(pubkey=signer, is_signer=True, is_writable=False)],
    )


def _status_name(confirmation_status: Any) -> str:
    # solders enums print as "TransactionConfirmationStatus.Confirmed"
    return str(confirmation_status or "").rsplit(".", 1)[-1].lower()


def classify_error(exc: Exception) -> Exception:
    """Map an RPC/transport exception to TransientChainError or RejectedChainError."""
    if isinstance(exc, (TransientChainError, RejectedChainError)):
        return exc
    message = str(exc)
    if isinstance(exc, (SolanaRpcException, httpx.TimeoutException, httpx.TransportError)):
        return TransientChainError(message or type(exc).__name__)
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code == 429 or code >= 500:
            return TransientChainError(message)
        return RejectedChainError(message)
    if isinstance(exc, RPCException):
        lowered = message.lower()
        if any(m in lowered for m in _TRANSIENT_MARKERS):
            return TransientChainError(message)
        return RejectedChainError(message)
    return TransientChainError(f"{type(exc).__name__}: {message}")


class SolanaChainClient(ChainClient):
    """Mints on an X1/Solana RPC endpoint with the mint authority keypair."""

    def __init__(
        self,
        *,
        rpc_url: str,
        keypair: Keypair,
        token_mint: str,
        token_program_id: str,
        token_decimals: int = 6,
        client: Any = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._keypair = keypair
        self._mint = Pubkey.from_string(token_mint)
        self._token_program = Pubkey.from_string(token_program_id)
        self._decimals = token_decimals
        self._client = client
        self._lock = threading.Lock()
        # signature -> blockhash of transactions sent by this process
        self._sent: dict[str, Hash] = {}

    @property
    def authority(self) -> Pubkey:
        return self._keypair.pubkey()

    def _client_ensure(self) -> Any:
        if self._client is None:
            self._client = Client(self._rpc_url)
        return self._client

    def _call(self, fn: Callable[[Any], Any]) -> Any:
        try:
            return fn(self._client_ensure())
        except Exception as e:
            raise classify_error(e) from e

    def describe(self) -> dict[str, Any]:
        return {
            "client": "solana",
            "rpc_url": mask_rpc_url(self._rpc_url),
            "authority": str(self.authority),
            "token_mint": str(self._mint),
            "token_program": str(self._token_program),
        }

    def verify(self) -> None:
        """Check the mint account exists under the token program; warn on low fee balance."""
        try:
            account = self._call(lambda c: c.get_account_info(self._mint, commitment=Confirmed)).value
        except (TransientChainError, RejectedChainError) as e:
            raise ConfigError(f"Cannot reach RPC {mask_rpc_url(self._rpc_url)}: {e}") from e
        if account is None:
            raise ConfigError(f"Token mint {self._mint} not found on {mask_rpc_url(self._rpc_url)}")
        if account.owner != self._token_program:
            raise ConfigError(
                f"Token mint {self._mint} is owned by {account.owner}, expected {self._token_program}"
            )
        try:
            lamports = self._call(lambda c: c.get_balance(self.authority, commitment=Confirmed)).value
        except TransientChainError as e:
            logger.warning("chain_balance_check_failed", error=str(e))
            return
        if lamports < LOW_BALANCE_LAMPORTS:
            logger.warning("chain_authority_low_balance", authority=str(self.authority), lamports=lamports)
        logger.info("chain_client_ready", lamports=lamports, **self.describe())

    def build_mint_instructions(self, recipient: Pubkey, base_units: int, memo: str | None) -> list[Instruction]:
        authority = self.authority
        destination = get_associated_token_address(recipient, self._mint, self._token_program)
        instructions = [
            build_create_ata_idempotent_instruction(authority, recipient, self._mint, self._token_program),
            build_mint_to_instruction(self._mint, destination, authority, base_units, self._token_program),
        ]
        if memo:
            instructions.append(build_memo_instruction(memo, authority))
        return instructions

    def submit_mint(
        self,
        recipient: str,
        amount: Decimal,
        *,
        memo: str | None = None,
        on_signed: OnSigned | None = None,
    ) -> str:
        try:
            recipient_pk = Pubkey.from_string(recipient)
        except Exception as e:
            raise RejectedChainError(f"invalid recipient address {recipient!r}") from e
        try:
            base_units = to_base_units(amount, self._decimals)
        except ValueError as e:
            raise RejectedChainError(str(e)) from e

        instructions = self.build_mint_instructions(recipient_pk, base_units, memo)
        blockhash = self._call(lambda c: c.get_latest_blockhash(Confirmed)).value.blockhash
        tx = Transaction.new_signed_with_payer(instructions, self.authority, [self._keypair], blockhash)
        signature = str(tx.signatures[0])
        with self._lock:
            self._sent[signature] = blockhash
        if on_signed is not None:
            on_signed(signature, str(blockhash))

        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed)
        try:
            resp = self._call(lambda c: c.send_transaction(tx, opts=opts))
        except TransientChainError as e:
            # The node may have accepted the bytes before the transport failed
            logger.warning("mint_tx_send_ambiguous", signature=signature, error=str(e))
            raise TransientChainError(str(e), tx_reference=signature) from e
        except RejectedChainError as e:
            # Identical bytes already landed (same blockhash on a fast resend)
            if any(m in str(e).lower() for m in _ALREADY_PROCESSED_MARKERS):
                logger.info("mint_tx_already_processed", signature=signature)
                return signature
            raise
        sent = str(resp.value)
        logger.info(
            "mint_tx_sent",
            signature=sent,
            recipient=recipient,
            base_units=base_units,
            memo=memo,
        )
        return sent

    def query_confirmation(
        self,
        tx_reference: str | None = None,
        *,
        burn_id: str | None = None,
        recent_blockhash: str | None = None,
    ) -> ConfirmationResult:
        result = ConfirmationResult.not_found()
        if tx_reference:
            result = self._query_signature(tx_reference, recent_blockhash)
        if result.status is ConfirmationStatus.NOT_FOUND and burn_id:
            result = self._query_memo(burn_id)
        return result

    def _query_signature(self, tx_reference: str, recent_blockhash: str | None = None) -> ConfirmationResult:
        try:
            sig = Signature.from_string(tx_reference)
        except Exception:
            logger.warning("chain_bad_tx_reference", tx_reference=tx_reference)
            return ConfirmationResult.not_found()
        statuses = self._call(
            lambda c: c.get_signature_statuses([sig], search_transaction_history=True)
        ).value
        st = statuses[0] if statuses else None
        if st is None:
            if self._blockhash_still_valid(tx_reference, recent_blockhash):
                # Not seen yet but may still land
                return ConfirmationResult(ConfirmationStatus.PENDING, tx_reference)
            return ConfirmationResult.not_found()
        if st.err is not None:
            return ConfirmationResult(ConfirmationStatus.FAILED, tx_reference, error=str(st.err))
        if _status_name(st.confirmation_status) in ("confirmed", "finalized"):
            return ConfirmationResult(ConfirmationStatus.CONFIRMED, tx_reference)
        return ConfirmationResult(ConfirmationStatus.PENDING, tx_reference)

    def _blockhash_still_valid(self, tx_reference: str, recent_blockhash: str | None = None) -> bool:
        with self._lock:
            blockhash = self._sent.get(tx_reference)
        if blockhash is None and recent_blockhash:
            # Signed by an earlier process; the ledger kept its blockhash
            try:
                blockhash = Hash.from_string(recent_blockhash)
            except ValueError:
                logger.warning("chain_bad_recent_blockhash", tx_reference=tx_reference)
                return False
        if blockhash is None:
            return False
        return bool(self._call(lambda c: c.is_blockhash_valid(blockhash, commitment=Confirmed)).value)

    def _query_memo(self, burn_id: str) -> ConfirmationResult:
        """Scan the authority's recent signatures for the burn's memo."""
        before = None
        found: ConfirmationResult | None = None
        for _ in range(MEMO_SCAN_MAX_PAGES):
            page = self._call(
                lambda c: c.get_signatures_for_address(
                    self.authority, before=before, limit=SIGNATURES_PAGE_LIMIT, commitment=Confirmed
                )
            ).value
            for entry in page:
                if not memo_matches(entry.memo, burn_id):
                    continue
                signature = str(entry.signature)
                if entry.err is not None:
                    found = found or ConfirmationResult(ConfirmationStatus.FAILED, signature, error=str(entry.err))
                    continue
                status = _status_name(entry.confirmation_status)
                if status in ("confirmed", "finalized"):
                    logger.info("chain_mint_found_by_memo", burn_id=burn_id, signature=signature)
                    return ConfirmationResult(ConfirmationStatus.CONFIRMED, signature)
                found = ConfirmationResult(ConfirmationStatus.PENDING, signature)
            if len(page) < SIGNATURES_PAGE_LIMIT:
                break
            before = page[-1].signature
        return found or ConfirmationResult.not_found()

    def close(self) -> None:
        self._client = None


__all__ = [
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "MEMO_PROGRAM_ID",
    "SolanaChainClient",
    "build_create_ata_idempotent_instruction",
    "build_memo_instruction",
    "build_mint_to_instruction",
    "classify_error",
    "get_associated_token_address",
    "load_mint_authority",
]
