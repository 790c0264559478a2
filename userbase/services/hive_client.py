# userbase/services/hive_client.py

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx

from userbase.core.errors import NotFoundError, UpstreamError
from userbase.services.identifiers import is_evm_address

logger = logging.getLogger(__name__)


class HiveAccountNotFound(NotFoundError):
    default_error = "Hive account not found"


@dataclass
class HiveAccount:
    name: str
    posting_keys: List[str] = field(default_factory=list)
    json_metadata: Dict[str, Any] = field(default_factory=dict)
    posting_json_metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "HiveAccount":
        posting = data.get("posting") or {}
        key_auths = posting.get("key_auths") or []
        return cls(
            name=data.get("name", ""),
            posting_keys=[entry[0] for entry in key_auths if entry],
            json_metadata=_parse_metadata(data.get("json_metadata")),
            posting_json_metadata=_parse_metadata(data.get("posting_json_metadata")),
        )


def _parse_metadata(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable Hive account metadata")
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass
class LinkedFarcaster:
    fid: str
    username: Optional[str] = None
    custody_address: Optional[str] = None
    verified_wallets: List[str] = field(default_factory=list)


@dataclass
class LinkedIdentities:
    addresses: List[str] = field(default_factory=list)
    farcaster: Optional[LinkedFarcaster] = None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_linked_identities(metadata: Dict[str, Any]) -> LinkedIdentities:
    """
    Collect the EVM wallets and Farcaster account a Hive profile advertises.

    Reads ``extensions.wallets`` and ``extensions.farcaster`` from the account's
    json_metadata, falling back to the legacy top-level ``ethereum_address``.
    Addresses are lowercased, deduplicated, and invalid ones dropped. Sections
    that are not objects are ignored.
    """
    extensions = _as_dict(metadata.get("extensions"))
    wallets = _as_dict(extensions.get("wallets"))
    farcaster = _as_dict(extensions.get("farcaster"))

    candidates: List[Any] = [
        wallets.get("primary_wallet") or metadata.get("ethereum_address"),
    ]
    if isinstance(wallets.get("additional"), list):
        candidates.extend(wallets["additional"])
    candidates.append(farcaster.get("custody_address"))
    verified_wallets = farcaster.get("verified_wallets")
    if isinstance(verified_wallets, list):
        candidates.extend(verified_wallets)

    seen: Set[str] = set()
    addresses: List[str] = []
    for candidate in candidates:
        if not candidate or not is_evm_address(candidate):
            continue
        address = candidate.lower()
        if address not in seen:
            seen.add(address)
            addresses.append(address)

    linked_farcaster = None
    if farcaster.get("fid"):
        custody = farcaster.get("custody_address")
        username = farcaster.get("username")
        linked_farcaster = LinkedFarcaster(
            fid=str(farcaster["fid"]),
            username=username if isinstance(username, str) else None,
            custody_address=custody.lower() if is_evm_address(custody) else None,
            verified_wallets=[w.lower() for w in verified_wallets if is_evm_address(w)]
            if isinstance(verified_wallets, list) else [],
        )

    return LinkedIdentities(addresses=addresses, farcaster=linked_farcaster)


class HiveClient:
    """Read-only Hive JSON-RPC client. Account data is fetched fresh on every call."""

    def __init__(self, api_url: str, timeout: float = 10.0):
        self.api_url = api_url
        self.timeout = timeout

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": 1}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Hive API request {method} failed: {e}")
            raise UpstreamError("Failed to reach Hive API", details=str(e))
        except ValueError as e:
            logger.error(f"Hive API returned invalid JSON for {method}: {e}")
            raise UpstreamError("Invalid response from Hive API", details=str(e))

        if body.get("error"):
            message = body["error"].get("message") if isinstance(body["error"], dict) else str(body["error"])
            logger.error(f"Hive API error for {method}: {message}")
            raise UpstreamError("Hive API returned an error", details=message)
        return body.get("result")

    async def get_account(self, handle: str) -> HiveAccount:
        result = await self._call("condenser_api.get_accounts", [[handle]])
        if not result:
            raise HiveAccountNotFound()
        return HiveAccount.from_rpc(result[0])

    async def account_exists(self, handle: str) -> bool:
        try:
            await self.get_account(handle)
        except HiveAccountNotFound:
            return False
        return True

    async def get_dynamic_global_properties(self) -> Dict[str, Any]:
        return await self._call("condenser_api.get_dynamic_global_properties", [])
