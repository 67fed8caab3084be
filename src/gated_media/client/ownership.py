"""
Token-ownership check against a Solana JSON-RPC endpoint.

A wallet is allowed to play the gated media when one of its SPL token
accounts holds a positive balance of the configured mint.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def _holds_mint(account: Any, mint_address: str) -> bool:
    info = account["account"]["data"]["parsed"]["info"]
    amount = info["tokenAmount"].get("uiAmount") or 0
    return info["mint"] == mint_address and amount > 0


class TokenOwnershipChecker:
    """Answer whether a wallet owns the gating token.

    Args:
        rpc_url: JSON-RPC endpoint of a Solana node.
        mint_address: Mint address of the gating NFT.
        token_program: SPL token program id.
        session: Optional aiohttp session to borrow.
    """

    def __init__(
        self,
        rpc_url: str,
        mint_address: str,
        token_program: str = TOKEN_PROGRAM_ID,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self.rpc_url = rpc_url
        self.mint_address = mint_address
        self.token_program = token_program
        self.session = session
        self.timeout = timeout

    def _payload(self, wallet: str) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getParsedTokenAccountsByOwner",
            "params": [
                wallet,
                {"programId": self.token_program},
                {"encoding": "jsonParsed"},
            ],
        }

    async def owns_token(self, wallet: str) -> bool:
        """Return True if `wallet` holds the mint. Any lookup error yields False."""
        if not wallet:
            return False
        try:
            if self.session is not None:
                result = await self._request(self.session, wallet)
            else:
                async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                    result = await self._request(session, wallet)
            return any(_holds_mint(account, self.mint_address) for account in result["value"])
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError) as e:
            logger.error("Error checking token ownership. wallet=%s error=%s", wallet, e)
            return False

    async def _request(self, session: aiohttp.ClientSession, wallet: str) -> Any:
        async with session.post(self.rpc_url, json=self._payload(wallet)) as response:
            response.raise_for_status()
            body = await response.json(content_type=None)
        if "error" in body:
            raise ValueError(f"RPC error: {body['error']}")
        return body["result"]
