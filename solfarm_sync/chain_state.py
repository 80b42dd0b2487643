from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey

from .exceptions import AccountDecodeError
from .layouts import decode_farm, decode_ledger, decode_token_amount, ledger_address
from .types import FarmDescriptor, ParsedFarmState, ParseReport, UserLedger

logger = logging.getLogger(__name__)

MAX_ACCOUNTS_PER_CALL = 100


def _account_bytes(account: Any) -> Optional[bytes]:
    """Raw data of an account from either a solders object or a JSON dict."""

    if account is None:
        return None
    data = account.get("data") if isinstance(account, Mapping) else getattr(account, "data", None)
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    encoded = None
    if isinstance(data, (list, tuple)) and data:
        encoded = data[0]
    elif isinstance(data, str):
        encoded = data
    if isinstance(encoded, str):
        return base64.b64decode(encoded)
    raise ValueError(f"unsupported account data type {type(data).__name__}")


def _response_value(resp: Any) -> Any:
    if isinstance(resp, Mapping):
        result = resp.get("result", resp)
        return result.get("value") if isinstance(result, Mapping) else result
    return getattr(resp, "value", None)


def _response_slot(resp: Any) -> Optional[int]:
    """Context slot of an RPC response, or ``None`` when the node omitted it."""

    if isinstance(resp, Mapping):
        result = resp.get("result", resp)
        context = result.get("context") if isinstance(result, Mapping) else None
        slot = context.get("slot") if isinstance(context, Mapping) else None
    else:
        slot = getattr(getattr(resp, "context", None), "slot", None)
    return slot if isinstance(slot, int) and not isinstance(slot, bool) else None


class ChainStateParser:
    """Query and decode the on-chain accounts behind farm descriptors.

    A failure for one descriptor never fails the batch: the descriptor is
    dropped from the result and the reason kept in :class:`ParseReport`.
    """

    def __init__(self, *, commitment: str = "confirmed", batch_size: int = MAX_ACCOUNTS_PER_CALL) -> None:
        self.commitment = Commitment(commitment)
        self.batch_size = max(1, min(int(batch_size), MAX_ACCOUNTS_PER_CALL))

    async def parse(
        self,
        descriptors: Sequence[FarmDescriptor],
        connection: Any,
        owner: Any = None,
    ) -> Tuple[ParsedFarmState, ...]:
        report = await self.parse_report(descriptors, connection, owner)
        return report.states

    async def parse_report(
        self,
        descriptors: Sequence[FarmDescriptor],
        connection: Any,
        owner: Any = None,
    ) -> ParseReport:
        if not descriptors or connection is None:
            return ParseReport(states=())

        failures: Dict[str, str] = {}
        valid: list[FarmDescriptor] = []
        for descriptor in descriptors:
            try:
                Pubkey.from_string(descriptor.id)
            except ValueError:
                failures[descriptor.id] = "invalid farm address"
                continue
            valid.append(descriptor)

        farm_data, farm_errors, observed_slot = await self._fetch_accounts(connection, [d.id for d in valid])

        decoded: list[tuple[FarmDescriptor, Any]] = []
        for descriptor in valid:
            if descriptor.id in farm_errors:
                failures[descriptor.id] = f"query failed: {farm_errors[descriptor.id]}"
                continue
            raw = farm_data.get(descriptor.id)
            if raw is None:
                failures[descriptor.id] = "farm account not found"
                continue
            try:
                account = decode_farm(descriptor.version, raw, descriptor.id, descriptor.reward_mints)
            except AccountDecodeError as exc:
                failures[descriptor.id] = f"decode failed: {exc.reason}"
                continue
            decoded.append((descriptor, account))

        vaults = sorted({account.lp_vault for _, account in decoded})
        vault_data, vault_errors, _ = await self._fetch_accounts(connection, vaults)

        ledgers: Dict[str, Optional[UserLedger]] = {}
        if owner is not None:
            ledgers = await self._fetch_ledgers(connection, [d for d, _ in decoded], str(owner))

        states: list[ParsedFarmState] = []
        for descriptor, account in decoded:
            vault = account.lp_vault
            if vault in vault_errors:
                failures[descriptor.id] = f"lp vault query failed: {vault_errors[vault]}"
                continue
            vault_raw = vault_data.get(vault)
            if vault_raw is None:
                failures[descriptor.id] = "lp vault account not found"
                continue
            try:
                staked = decode_token_amount(vault_raw, vault)
            except AccountDecodeError as exc:
                failures[descriptor.id] = f"lp vault decode failed: {exc.reason}"
                continue
            states.append(
                ParsedFarmState(
                    descriptor=descriptor,
                    version=account.version,
                    state=account.state,
                    lp_vault=vault,
                    staked_lp_amount=staked,
                    rewards=account.rewards,
                    last_slot=account.last_slot,
                    lp_mint=account.lp_mint or descriptor.lp_mint,
                    ledger=ledgers.get(descriptor.id),
                    reward_multiplier=account.reward_multiplier,
                    observed_slot=observed_slot,
                )
            )

        for farm_id, reason in failures.items():
            logger.warning("Dropping farm %s: %s", farm_id, reason)
        logger.debug("Parsed %d/%d farms", len(states), len(descriptors))
        return ParseReport(states=tuple(states), failures=failures)

    async def _fetch_ledgers(
        self,
        connection: Any,
        descriptors: Sequence[FarmDescriptor],
        owner: str,
    ) -> Dict[str, Optional[UserLedger]]:
        addresses: Dict[str, str] = {}
        for descriptor in descriptors:
            try:
                addresses[descriptor.id] = ledger_address(
                    descriptor.id, owner, descriptor.version, descriptor.program_id
                )
            except ValueError as exc:
                logger.debug("No ledger address for farm %s: %s", descriptor.id, exc)
        data, errors, _ = await self._fetch_accounts(connection, list(addresses.values()))
        versions = {d.id: d.version for d in descriptors}
        ledgers: Dict[str, Optional[UserLedger]] = {}
        for farm_id, address in addresses.items():
            raw = data.get(address)
            if address in errors or raw is None:
                ledgers[farm_id] = None
                continue
            try:
                ledgers[farm_id] = decode_ledger(versions[farm_id], raw, address)
            except AccountDecodeError as exc:
                logger.debug("Ignoring ledger of farm %s: %s", farm_id, exc.reason)
                ledgers[farm_id] = None
        return ledgers

    async def _fetch_accounts(
        self,
        connection: Any,
        addresses: Sequence[str],
    ) -> tuple[Dict[str, Optional[bytes]], Dict[str, str], Optional[int]]:
        """Fetch raw data for ``addresses``; returns ``(data, errors, slot)``.

        ``slot`` is the lowest context slot reported by a batch response.

        A failing batch is retried one account at a time so that a single
        bad key only marks itself as failed.
        """

        data: Dict[str, Optional[bytes]] = {}
        errors: Dict[str, str] = {}
        chunks = [addresses[i : i + self.batch_size] for i in range(0, len(addresses), self.batch_size)]
        results = await asyncio.gather(
            *(self._fetch_chunk(connection, chunk) for chunk in chunks)
        )
        slots: list[int] = []
        for chunk_data, chunk_errors, chunk_slot in results:
            data.update(chunk_data)
            errors.update(chunk_errors)
            if chunk_slot is not None:
                slots.append(chunk_slot)
        return data, errors, min(slots, default=None)

    async def _fetch_chunk(
        self,
        connection: Any,
        chunk: Sequence[str],
    ) -> tuple[Dict[str, Optional[bytes]], Dict[str, str], Optional[int]]:
        data: Dict[str, Optional[bytes]] = {}
        errors: Dict[str, str] = {}
        try:
            resp = await connection.get_multiple_accounts(
                [Pubkey.from_string(a) for a in chunk],
                commitment=self.commitment,
            )
            accounts = list(_response_value(resp) or [])
            if len(accounts) != len(chunk):
                raise ValueError(f"expected {len(chunk)} accounts, got {len(accounts)}")
            for address, account in zip(chunk, accounts):
                data[address] = _account_bytes(account)
            return data, errors, _response_slot(resp)
        except Exception as exc:
            if len(chunk) == 1:
                errors[chunk[0]] = str(exc) or type(exc).__name__
                return data, errors, None
            logger.debug("Batch account query failed (%s); retrying %d accounts one by one", exc, len(chunk))

        slots: list[int] = []
        for address in chunk:
            try:
                resp = await connection.get_account_info(
                    Pubkey.from_string(address),
                    commitment=self.commitment,
                )
                data[address] = _account_bytes(_response_value(resp))
            except Exception as exc:
                errors[address] = str(exc) or type(exc).__name__
                continue
            slot = _response_slot(resp)
            if slot is not None:
                slots.append(slot)
        return data, errors, min(slots, default=None)


__all__ = ["ChainStateParser"]
