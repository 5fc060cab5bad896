"""Ledger transport: submit signed instructions and fetch account bytes.

``Transport`` is the whole contract the client needs. ``RpcTransport``
implements it on solana-py's async RPC client and classifies every failure
into the ``SubmissionError`` hierarchy before it reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .errors import InvalidInput, NotFound, RemoteRejected, SubmissionError, Timeout, TransportFailure

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        """Sign, send, and wait for confirmation; return the signature."""

    async def fetch(self, address: Pubkey) -> bytes:
        """Return the account data at ``address`` or raise ``NotFound``."""


def _rpc_diagnostic(exc: RPCException) -> tuple[str, List[str]]:
    detail = exc.args[0] if exc.args else exc
    message = getattr(detail, "message", None) or str(detail)
    data = getattr(detail, "data", None)
    logs = getattr(data, "logs", None) or []
    return str(message), [str(line) for line in logs]


def classify_error(exc: BaseException, signature: Optional[str] = None) -> Optional[SubmissionError]:
    """Map a solana-py/httpx failure onto the submission error taxonomy."""
    if isinstance(exc, SubmissionError):
        return exc
    if isinstance(exc, RPCException):
        message, logs = _rpc_diagnostic(exc)
        return RemoteRejected(message, signature=signature, logs=logs)
    if isinstance(exc, (UnconfirmedTxError, asyncio.TimeoutError, httpx.TimeoutException)):
        return Timeout(str(exc) or "confirmation timed out", signature=signature)
    if isinstance(exc, SolanaRpcException):
        cause = exc.__cause__
        if isinstance(cause, httpx.TimeoutException):
            return Timeout(str(cause) or "RPC request timed out", signature=signature)
        return TransportFailure(str(cause or exc), signature=signature)
    if isinstance(exc, (httpx.HTTPError, OSError)):
        return TransportFailure(str(exc), signature=signature)
    return None


class RpcTransport:
    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        confirm_timeout: float = 60.0,
        poll_interval: float = 0.5,
        fetch_retries: int = 3,
        client: Optional[AsyncClient] = None,
    ) -> None:
        if confirm_timeout <= 0:
            raise ValueError("confirm_timeout must be > 0")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self.rpc_url = rpc_url
        self.commitment = Commitment(commitment)
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.fetch_retries = fetch_retries
        self.client = client or AsyncClient(rpc_url, commitment=self.commitment)

    async def __aenter__(self) -> "RpcTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def fetch(self, address: Pubkey) -> bytes:
        for attempt in range(self.fetch_retries + 1):
            try:
                resp = await self.client.get_account_info(address, commitment=self.commitment)
                break
            except RPCException as exc:
                message, _ = _rpc_diagnostic(exc)
                raise TransportFailure(f"getAccountInfo failed: {message}") from exc
            except (SolanaRpcException, httpx.HTTPError) as exc:
                if attempt < self.fetch_retries:
                    await asyncio.sleep(0.25 * (2**attempt))
                    continue
                classified = classify_error(exc)
                raise (classified or TransportFailure(str(exc))) from exc
        if resp.value is None:
            raise NotFound(address)
        return bytes(resp.value.data)

    async def submit(self, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> str:
        if not instructions:
            raise InvalidInput("no instructions to submit")
        if not signers:
            raise InvalidInput("at least one signer (the fee payer) is required")
        payer = signers[0]
        signature: Optional[str] = None
        try:
            latest = (await self.client.get_latest_blockhash(self.commitment)).value
            tx = Transaction.new_signed_with_payer(
                list(instructions),
                payer.pubkey(),
                list(signers),
                latest.blockhash,
            )
            logger.info(
                "submitting %d instruction(s) with %d signer(s), payer %s",
                len(instructions),
                len(signers),
                payer.pubkey(),
            )
            sent = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=False, preflight_commitment=self.commitment),
            )
            signature = str(sent.value)
            status_resp = await asyncio.wait_for(
                self.client.confirm_transaction(
                    sent.value,
                    commitment=self.commitment,
                    sleep_seconds=self.poll_interval,
                    last_valid_block_height=latest.last_valid_block_height,
                ),
                timeout=self.confirm_timeout,
            )
        except Exception as exc:
            classified = classify_error(exc, signature)
            if classified is None:
                raise
            logger.info("submission failed (%s): %s", classified.kind, classified.diagnostic)
            raise classified from exc

        statuses = status_resp.value if status_resp is not None else None
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            raise RemoteRejected(str(status.err), signature=signature)
        logger.info("confirmed %s", signature)
        return signature
