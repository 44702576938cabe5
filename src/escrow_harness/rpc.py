"""JSON-RPC client for the ledger node under test."""

from __future__ import annotations

import asyncio
import base64
import itertools
import logging
from typing import Any, Optional

import aiohttp
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .config import COMMITMENT_LEVELS, DEFAULT_COMMITMENT
from .errors import ErrorCode, HarnessError

logger = logging.getLogger(__name__)

# Preflight and execution failures reported by sendTransaction.
_REJECTION_CODES = frozenset({-32002, -32003})


def commitment_reached(status: Optional[str], commitment: str) -> bool:
    if status not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(status) >= COMMITMENT_LEVELS.index(commitment)


class RpcClient:
    """Async JSON-RPC 2.0 client for a single ledger endpoint."""

    def __init__(
        self,
        endpoint: str,
        commitment: str = DEFAULT_COMMITMENT,
        timeout: float = 30.0,
    ):
        self.endpoint = endpoint
        self.commitment = commitment
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Initialize HTTP session."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        self.session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        """Close HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "RpcClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _call(self, method: str, params: list[Any]) -> Any:
        if self.session is None:
            raise HarnessError(ErrorCode.CONNECTIVITY, "RPC session is not connected")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug(f"-> {method} {params}")
        try:
            async with self.session.post(self.endpoint, json=payload) as resp:
                resp.raise_for_status()
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HarnessError(
                ErrorCode.CONNECTIVITY, f"{method} to {self.endpoint} failed: {e}"
            ) from e

        return self._unwrap(method, data)

    @staticmethod
    def _unwrap(method: str, data: Any) -> Any:
        if not isinstance(data, dict):
            raise HarnessError(ErrorCode.RPC_ERROR, f"{method}: malformed response")
        error = data.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else error
            if code in _REJECTION_CODES:
                raise HarnessError(ErrorCode.TRANSACTION_REJECTED, f"{method}: {message}")
            raise HarnessError(ErrorCode.RPC_ERROR, f"{method}: [{code}] {message}")
        if "result" not in data:
            raise HarnessError(ErrorCode.RPC_ERROR, f"{method}: response has no result")
        return data["result"]

    def _config(self, **extra: Any) -> dict[str, Any]:
        cfg: dict[str, Any] = {"commitment": self.commitment}
        cfg.update(extra)
        return cfg

    @staticmethod
    def _value(method: str, result: Any) -> Any:
        if not isinstance(result, dict) or "value" not in result:
            raise HarnessError(ErrorCode.RPC_ERROR, f"{method}: expected a context/value result")
        return result["value"]

    async def get_balance(self, address: Pubkey) -> int:
        result = await self._call("getBalance", [str(address), self._config()])
        return int(self._value("getBalance", result))

    async def request_airdrop(self, address: Pubkey, lamports: int) -> str:
        result = await self._call(
            "requestAirdrop", [str(address), lamports, self._config()]
        )
        return str(result)

    async def confirm(self, signature: str) -> bool:
        """True once the signature reaches the configured commitment.

        A status that carries an execution error raises TRANSACTION_REJECTED.
        """
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = self._value("getSignatureStatuses", result)
        status = statuses[0] if statuses else None
        if status is None:
            return False
        if status.get("err") is not None:
            raise HarnessError(
                ErrorCode.TRANSACTION_REJECTED,
                f"transaction {signature} failed: {status['err']}",
            )
        return commitment_reached(status.get("confirmationStatus"), self.commitment)

    async def get_latest_blockhash(self) -> Hash:
        result = await self._call("getLatestBlockhash", [self._config()])
        value = self._value("getLatestBlockhash", result)
        return Hash.from_string(value["blockhash"])

    async def send_transaction(self, tx: Transaction) -> str:
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        result = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        return str(result)

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        """Raw account bytes, or None if the account does not exist."""
        result = await self._call(
            "getAccountInfo", [str(address), self._config(encoding="base64")]
        )
        value = self._value("getAccountInfo", result)
        if value is None:
            return None
        data = value.get("data")
        if not isinstance(data, list) or len(data) != 2 or data[1] != "base64":
            raise HarnessError(ErrorCode.RPC_ERROR, f"getAccountInfo: unexpected data encoding for {address}")
        return base64.b64decode(data[0])

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        result = await self._call(
            "getMinimumBalanceForRentExemption", [size, self._config()]
        )
        return int(result)
