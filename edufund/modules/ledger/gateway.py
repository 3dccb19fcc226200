"""
Ledger Gateway - capability boundary over the XRP Ledger.

Prepare operations return unsigned, autofilled transaction JSON for the
owning party's wallet to sign and submit; they never submit anything. The
only transaction this process signs itself is the escrow release, with the
designated releaser wallet.
"""
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from xrpl.asyncio.clients import AsyncJsonRpcClient, AsyncWebsocketClient
from xrpl.asyncio.transaction import autofill, submit_and_wait
from xrpl.constants import XRPLException
from xrpl.models.requests import AccountObjects, AccountObjectType, AccountTx, Subscribe
from xrpl.models.transactions import (
    EscrowCreate, EscrowFinish, NFTokenAcceptOffer, NFTokenBurn,
    NFTokenCreateOffer, NFTokenCreateOfferFlag, NFTokenMint, NFTokenMintFlag,
    Transaction,
)
from xrpl.utils import str_to_hex
from xrpl.wallet import Wallet

from edufund.core.config import settings
from edufund.core.exceptions import ExternalServiceError, ValidationFailed
from edufund.modules.ledger.events import (
    LockObject, PaymentEvent, lock_object_from, payment_event_from
)

logger = logging.getLogger(__name__)

Instruction = Dict[str, Any]


class LedgerGateway:
    """Operations the settlement engine needs from the ledger"""

    async def create_asset(self, owner: str, metadata_uri: str) -> Instruction:
        """Unsigned NFT mint carrying the agreement's metadata URI"""
        raise NotImplementedError

    async def create_transfer_offer(self, owner: str, asset_id: str, destination: str) -> Instruction:
        """Unsigned zero-price sell offer for the asset"""
        raise NotImplementedError

    async def accept_transfer_offer(self, account: str, offer_ref: str) -> Instruction:
        raise NotImplementedError

    async def lock_funds(self, owner: str, destination: str, amount: int, finish_after: int) -> Instruction:
        """Unsigned escrow of ``amount`` drops maturing at Ripple time ``finish_after``"""
        raise NotImplementedError

    async def release_locked_funds(self, owner: str, sequence: int) -> str:
        """Sign and submit an escrow release; returns the validated tx hash"""
        raise NotImplementedError

    async def burn_asset(self, owner: str, asset_id: str) -> Instruction:
        raise NotImplementedError

    async def get_account_objects(self, account: str) -> List[LockObject]:
        """Escrows currently owned by or payable to ``account``"""
        raise NotImplementedError

    async def fetch_account_payments(self, account: str, after_ledger: int) -> List[PaymentEvent]:
        """Validated payments touching ``account`` after a ledger index, oldest first"""
        raise NotImplementedError

    def subscribe_to_payments(self, accounts: List[str]) -> AsyncIterator[PaymentEvent]:
        """Stream payments touching ``accounts`` until the connection ends"""
        raise NotImplementedError


class XRPLGateway(LedgerGateway):
    """LedgerGateway backed by xrpl-py JSON-RPC and websocket clients"""

    def __init__(self, rpc_url: str = None, ws_url: str = None, releaser_seed: str = None):
        self.rpc_url = rpc_url or settings.XRPL_RPC_URL
        self.ws_url = ws_url or settings.XRPL_WS_URL
        self.client = AsyncJsonRpcClient(self.rpc_url)
        seed = releaser_seed if releaser_seed is not None else settings.RELEASER_SEED
        self.releaser: Optional[Wallet] = Wallet.from_seed(seed) if seed else None
        logger.info("XRPL gateway initialized: %s", self.rpc_url)

    # ============================================================
    # Unsigned instructions
    # ============================================================

    async def _prepare(self, transaction: Transaction) -> Instruction:
        try:
            prepared = await autofill(transaction, self.client)
        except (XRPLException, httpx.HTTPError, OSError) as e:
            raise ExternalServiceError(
                f"Ledger unavailable while preparing {transaction.transaction_type.value}: {e}",
                reason="ledger_unavailable",
            )
        return prepared.to_xrpl()

    async def create_asset(self, owner: str, metadata_uri: str) -> Instruction:
        return await self._prepare(NFTokenMint(
            account=owner,
            uri=str_to_hex(metadata_uri).upper(),
            flags=NFTokenMintFlag.TF_BURNABLE | NFTokenMintFlag.TF_TRANSFERABLE,
            nftoken_taxon=0,
        ))

    async def create_transfer_offer(self, owner: str, asset_id: str, destination: str) -> Instruction:
        return await self._prepare(NFTokenCreateOffer(
            account=owner,
            nftoken_id=asset_id,
            amount="0",
            destination=destination,
            flags=NFTokenCreateOfferFlag.TF_SELL_NFTOKEN,
        ))

    async def accept_transfer_offer(self, account: str, offer_ref: str) -> Instruction:
        return await self._prepare(NFTokenAcceptOffer(
            account=account,
            nftoken_sell_offer=offer_ref,
        ))

    async def lock_funds(self, owner: str, destination: str, amount: int, finish_after: int) -> Instruction:
        return await self._prepare(EscrowCreate(
            account=owner,
            destination=destination,
            amount=str(amount),
            finish_after=finish_after,
        ))

    async def burn_asset(self, owner: str, asset_id: str) -> Instruction:
        return await self._prepare(NFTokenBurn(
            account=owner,
            nftoken_id=asset_id,
        ))

    # ============================================================
    # Submission
    # ============================================================

    async def release_locked_funds(self, owner: str, sequence: int) -> str:
        if self.releaser is None:
            raise ValidationFailed("No releaser wallet configured", reason="releaser_not_configured")
        finish = EscrowFinish(
            account=self.releaser.address,
            owner=owner,
            offer_sequence=sequence,
        )
        try:
            response = await submit_and_wait(finish, self.client, self.releaser)
        except (XRPLException, httpx.HTTPError, OSError) as e:
            raise ExternalServiceError(
                f"Escrow release for {owner}:{sequence} failed: {e}",
                reason="release_failed",
            )
        result = response.result.get("meta", {}).get("TransactionResult")
        if not response.is_successful() or result != "tesSUCCESS":
            raise ExternalServiceError(
                f"Escrow release for {owner}:{sequence} returned {result}",
                reason="release_failed",
            )
        return response.result.get("hash") or response.result.get("tx_json", {}).get("hash", "")

    # ============================================================
    # Queries
    # ============================================================

    async def _request_pages(self, request_factory, key: str) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        marker = None
        while True:
            try:
                response = await self.client.request(request_factory(marker))
            except (XRPLException, httpx.HTTPError, OSError) as e:
                raise ExternalServiceError(f"Ledger query failed: {e}", reason="ledger_unavailable")
            if not response.is_successful():
                raise ExternalServiceError(
                    f"Ledger query failed: {response.result.get('error', response.result)}",
                    reason="ledger_query_failed",
                )
            entries.extend(response.result.get(key, []))
            marker = response.result.get("marker")
            if marker is None:
                return entries

    async def get_account_objects(self, account: str) -> List[LockObject]:
        entries = await self._request_pages(
            lambda marker: AccountObjects(
                account=account,
                type=AccountObjectType.ESCROW,
                ledger_index="validated",
                marker=marker,
            ),
            "account_objects",
        )
        return [lock_object_from(entry) for entry in entries]

    async def fetch_account_payments(self, account: str, after_ledger: int) -> List[PaymentEvent]:
        entries = await self._request_pages(
            lambda marker: AccountTx(
                account=account,
                ledger_index_min=after_ledger + 1,
                ledger_index_max=-1,
                forward=True,
                marker=marker,
            ),
            "transactions",
        )
        events = []
        for entry in entries:
            event = payment_event_from(entry)
            if event is not None and event.validated:
                events.append(event)
        return events

    async def subscribe_to_payments(self, accounts: List[str]) -> AsyncIterator[PaymentEvent]:
        async with AsyncWebsocketClient(self.ws_url) as client:
            await client.send(Subscribe(accounts=accounts))
            logger.info("Subscribed to payments for %d account(s)", len(accounts))
            async for message in client:
                if message.get("type") != "transaction":
                    continue
                event = payment_event_from(message)
                if event is not None:
                    yield event
