import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .errors import InitializationError, LedgerError
from .guard import InitGuard
from .models import MEMORY_RECORD_TYPE, HistoryEntry, LedgerRecord

log = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "https://arweave.net"
DEFAULT_PAGE_SIZE = 1000
DEFAULT_MAX_PAGES = 20
REQUEST_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class StorageEndpoints:
    """Routes on the upload service, relative to its base URL."""

    nonce: str = "/auth/nonce"
    login: str = "/auth/login"
    uploads: str = "/upload"


class StorageApi:
    """HTTP client for the Arweave upload service and the public gateway.

    Authentication signs a server-issued nonce with an EVM key; the returned
    bearer token is attached to every upload and listing call.
    """

    def __init__(
        self,
        *,
        base_url: str,
        private_key: str,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        app_name: str = "scrt-trading-agent",
        endpoints: Optional[StorageEndpoints] = None,
    ) -> None:
        if not base_url:
            raise InitializationError("storage API URL is not set")
        if not private_key:
            raise InitializationError("storage private key is not set")
        try:
            self._account = Account.from_key(private_key)
        except Exception as exc:
            raise InitializationError(f"invalid storage private key: {exc}") from exc
        self.base_url = base_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/")
        self.app_name = app_name
        self.endpoints = endpoints or StorageEndpoints()
        self.address = Web3.to_checksum_address(self._account.address)
        self._token: Optional[str] = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def sign_nonce(self, nonce: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=nonce))
        signature = signed.signature.hex()
        return signature if signature.startswith("0x") else f"0x{signature}"

    def _headers(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=self._headers(), **kwargs) as resp:
                    resp.raise_for_status()
                    return await resp.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as exc:
            raise LedgerError(f"{method} {url} failed: {exc}") from exc

    async def login(self) -> None:
        challenge = await self._request(
            "POST", self._url(self.endpoints.nonce), json={"address": self.address}
        )
        nonce = str((challenge or {}).get("nonce") or "")
        if not nonce:
            raise LedgerError("storage API returned no login nonce")
        session = await self._request(
            "POST",
            self._url(self.endpoints.login),
            json={
                "address": self.address,
                "signature": self.sign_nonce(nonce),
                "appName": self.app_name,
            },
        )
        token = str((session or {}).get("token") or "")
        if not token:
            raise LedgerError("storage API login returned no token")
        self._token = token

    async def upload(
        self,
        data: bytes,
        *,
        name: str,
        content_type: str,
        tags: List[Dict[str, str]],
        size: int,
    ) -> Dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("file", data, filename=name, content_type=content_type)
        form.add_field("name", name)
        form.add_field("dataContentType", content_type)
        form.add_field("tags", json.dumps(tags))
        form.add_field("size", str(size))
        form.add_field("overrideFileName", "true")
        result = await self._request("POST", self._url(self.endpoints.uploads), data=form)
        return result if isinstance(result, dict) else {}

    async def list_uploads(self, *, page: int, limit: int) -> Dict[str, Any]:
        result = await self._request(
            "GET", self._url(self.endpoints.uploads), params={"page": page, "limit": limit}
        )
        return result if isinstance(result, dict) else {"data": []}

    async def fetch_blob(self, content_address: str) -> bytes:
        url = f"{self.gateway_url}/{content_address}"
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as resp:
                    resp.raise_for_status()
                    return await resp.read()
        except aiohttp.ClientError as exc:
            raise LedgerError(f"GET {url} failed: {exc}") from exc


def _tag_value(tags: Iterable[Dict[str, Any]], name: str) -> Optional[str]:
    for tag in tags or []:
        if isinstance(tag, dict) and tag.get("name") == name:
            return str(tag.get("value"))
    return None


class LedgerClient:
    """Append-only conversation memory on the durable storage network."""

    def __init__(
        self, api, *, page_size: int = DEFAULT_PAGE_SIZE, max_pages: int = DEFAULT_MAX_PAGES
    ) -> None:
        self.api = api
        self.page_size = page_size
        self.max_pages = max_pages
        self._guard = InitGuard(self._login, name="ledger")

    async def _login(self) -> None:
        log.info("Initializing ledger client...")
        try:
            await self.api.login()
        except LedgerError:
            raise
        except Exception as exc:
            raise LedgerError(f"ledger login failed: {exc}") from exc
        log.info("Ledger client initialized and logged in.")

    async def ready(self) -> None:
        await self._guard.get()

    async def store(self, user_id: str, message: str, response: str) -> str:
        await self.ready()
        record = LedgerRecord(user_id=user_id, message=message, response=response)
        data = record.to_bytes()
        name = f"{user_id}-{int(time.time() * 1000)}.json"
        try:
            upload = await self.api.upload(
                data,
                name=name,
                content_type="application/json",
                tags=record.tags(),
                size=len(data),
            )
        except LedgerError:
            raise
        except Exception as exc:
            raise LedgerError(f"failed to store memory on ledger: {exc}") from exc
        record_id = (upload or {}).get("id")
        if not record_id:
            raise LedgerError("Failed to store memory on ledger")
        log.info("Memory stored on ledger: %s", record_id)
        return str(record_id)

    async def _memory_uploads(self, user_id: str) -> List[Dict[str, Any]]:
        matches: List[Dict[str, Any]] = []
        previous_ids: Optional[List[Any]] = None
        for page in range(1, self.max_pages + 1):
            try:
                listing = await self.api.list_uploads(page=page, limit=self.page_size)
            except LedgerError:
                raise
            except Exception as exc:
                raise LedgerError(f"failed to list ledger uploads: {exc}") from exc
            items = (listing or {}).get("data") or []
            page_ids = [item.get("id") for item in items]
            if page_ids and page_ids == previous_ids:
                log.warning("Upload listing returned page %d twice; stopping", page - 1)
                return matches
            previous_ids = page_ids
            for item in items:
                tags = item.get("tags") or []
                if _tag_value(tags, "Type") != MEMORY_RECORD_TYPE:
                    continue
                if _tag_value(tags, "User-ID") != user_id:
                    continue
                matches.append(item)
            if len(items) < self.page_size:
                return matches
        log.warning(
            "Upload listing still full after %d pages; older history for %s is not loaded",
            self.max_pages,
            user_id,
        )
        return matches

    async def fetch_history(self, user_id: str) -> List[HistoryEntry]:
        await self.ready()
        uploads = await self._memory_uploads(user_id)
        log.info("Memory uploads found on ledger for %s: %d", user_id, len(uploads))
        history: List[HistoryEntry] = []
        for upload in uploads:
            content_address = upload.get("arweaveTxId")
            if not content_address:
                continue
            try:
                raw = await self.api.fetch_blob(content_address)
                record = LedgerRecord.from_bytes(raw)
            except LedgerError:
                raise
            except Exception as exc:
                raise LedgerError(
                    f"failed to read ledger record {content_address}: {exc}"
                ) from exc
            history.append(record.as_entry())
        return history
