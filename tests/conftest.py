from __future__ import annotations

import base64
import json
from typing import Any, Dict, List, Optional

import pytest
from aiohttp import web
from miscreant.aes.siv import SIV
from secret_sdk.client.lcd import AsyncLCDClient

from core.errors import LedgerError
from core.ledger import StorageEndpoints
from core.llm import LLMReply
from core.local_store import ConversationStore
from core.models import HistoryEntry
from core.trade import BroadcastResult, SwapRoute

WALLET_ADDRESS = "secret1testwalletaddress"
SSCRT = "secret1sscrt"
SUSDC = "secret1susdc"


class FakeStorageApi:
    """In-memory stand-in for the Arweave upload service and gateway."""

    def __init__(self) -> None:
        self.uploads: List[Dict[str, Any]] = []
        self.blobs: Dict[str, bytes] = {}
        self.logins = 0
        self.login_error: Optional[Exception] = None
        self.upload_response: Optional[Dict[str, Any]] = None
        self.failing_blobs: set = set()
        self.pages_requested: List[int] = []

    async def login(self) -> None:
        self.logins += 1
        if self.login_error is not None:
            raise self.login_error

    async def upload(self, data, *, name, content_type, tags, size):
        index = len(self.uploads) + 1
        record = {
            "id": f"upload-{index}",
            "name": name,
            "contentType": content_type,
            "tags": tags,
            "size": size,
            "arweaveTxId": f"tx-{index}",
        }
        self.uploads.append(record)
        self.blobs[record["arweaveTxId"]] = data
        if self.upload_response is not None:
            return self.upload_response
        return {"id": record["id"]}

    def add_raw(self, record: Dict[str, Any], blob: Optional[bytes] = None) -> None:
        self.uploads.append(record)
        if blob is not None and record.get("arweaveTxId"):
            self.blobs[record["arweaveTxId"]] = blob

    async def list_uploads(self, *, page, limit):
        self.pages_requested.append(page)
        start = (page - 1) * limit
        return {"data": self.uploads[start : start + limit]}

    async def fetch_blob(self, content_address):
        if content_address in self.failing_blobs:
            raise LedgerError(f"gateway error for {content_address}")
        return self.blobs[content_address]


class FakeStorageService:
    """aiohttp app playing the upload service and the gateway for ``StorageApi``."""

    def __init__(self, endpoints: Optional[StorageEndpoints] = None) -> None:
        self.endpoints = endpoints or StorageEndpoints()
        self.nonce = "nonce-42"
        self.token = "token-abc"
        self.logins: List[Dict[str, Any]] = []
        self.uploads: List[Dict[str, Any]] = []
        self.listings: List[Dict[str, Any]] = []
        self.blobs: Dict[str, bytes] = {}
        self.failing: set = set()

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(self.endpoints.nonce, self._nonce)
        app.router.add_post(self.endpoints.login, self._login)
        app.router.add_post(self.endpoints.uploads, self._upload)
        app.router.add_get(self.endpoints.uploads, self._list)
        app.router.add_get("/gateway/{address}", self._blob)
        return app

    def _failure(self, request: web.Request) -> Optional[web.Response]:
        if request.path in self.failing:
            return web.json_response({"error": "service unavailable"}, status=503)
        return None

    async def _nonce(self, request: web.Request) -> web.Response:
        body = await request.json()
        return self._failure(request) or web.json_response(
            {"nonce": self.nonce, "address": body["address"]}
        )

    async def _login(self, request: web.Request) -> web.Response:
        self.logins.append(await request.json())
        return self._failure(request) or web.json_response({"token": self.token})

    async def _upload(self, request: web.Request) -> web.Response:
        form = await request.post()
        upload = {key: form[key] for key in form if key != "file"}
        upload["file"] = form["file"].file.read()
        upload["filename"] = form["file"].filename
        upload["authorization"] = request.headers.get("Authorization")
        self.uploads.append(upload)
        return self._failure(request) or web.json_response({"id": f"up-{len(self.uploads)}"})

    async def _list(self, request: web.Request) -> web.Response:
        self.listings.append(
            {
                "page": request.query.get("page"),
                "limit": request.query.get("limit"),
                "authorization": request.headers.get("Authorization"),
            }
        )
        return self._failure(request) or web.json_response({"data": [{"id": "up-1"}]})

    async def _blob(self, request: web.Request) -> web.Response:
        failure = self._failure(request)
        if failure is not None:
            return failure
        address = request.match_info["address"]
        if address not in self.blobs:
            raise web.HTTPNotFound()
        return web.Response(body=self.blobs[address], content_type="application/json")


class FakeLedger:
    """LedgerClient double with per-user canned history."""

    def __init__(self, history: Optional[Dict[str, List[HistoryEntry]]] = None) -> None:
        self.history = history or {}
        self.stored: List[tuple] = []
        self.fetch_error: Optional[Exception] = None
        self.store_error: Optional[Exception] = None
        self.ready_error: Optional[Exception] = None

    async def ready(self) -> None:
        if self.ready_error is not None:
            raise self.ready_error

    async def fetch_history(self, user_id):
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.history.get(user_id, []))

    async def store(self, user_id, message, response):
        if self.store_error is not None:
            raise self.store_error
        self.stored.append((user_id, message, response))
        return f"record-{len(self.stored)}"


class FakeChain:
    def __init__(self) -> None:
        self.address = WALLET_ADDRESS
        self.broadcast_result = BroadcastResult(tx_hash="H", code=0, raw_log="ok")
        self.broadcast_error: Optional[Exception] = None
        self.tx_info: Any = {"height": "123"}
        self.tx_error: Optional[Exception] = None
        self.balances: Dict[str, str] = {}
        self.broadcasts: List[tuple] = []
        self.lookups: List[str] = []
        self.connect_error: Optional[Exception] = None
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def broadcast(self, calls, fee):
        self.broadcasts.append((calls, fee))
        if self.broadcast_error is not None:
            raise self.broadcast_error
        return self.broadcast_result

    async def get_transaction(self, tx_hash):
        self.lookups.append(tx_hash)
        if self.tx_error is not None:
            raise self.tx_error
        return self.tx_info

    async def token_balance(self, contract_address, viewing_key):
        if not viewing_key:
            return "Error: Viewing key not set"
        return self.balances[contract_address]


class FakeLcdNode:
    """Answers the Secret LCD REST calls that ``AsyncLCDClient`` makes.

    Installed over ``AsyncLCDClient._get`` and ``_post`` so the real SDK builds,
    encrypts, signs and encodes everything up to the HTTP hop.
    """

    # X25519 base point; any valid curve point works as the node's key.
    CONSENSUS_KEY = bytes([9] + [0] * 31)
    CODE_HASH = "ab" * 32

    def __init__(self) -> None:
        self.tx_response: Dict[str, Any] = {
            "txhash": "5A1F",
            "code": 0,
            "raw_log": "[]",
            "codespace": "",
        }
        self.balance = "1500000"
        self.query_error: Optional[Exception] = None
        self.key_error: Optional[Exception] = None
        self.tx_lookup: Dict[str, Any] = {"tx_response": {"height": "0"}}
        self.gets: List[str] = []
        self.posts: List[tuple] = []

    def install(self, monkeypatch) -> None:
        node = self

        async def _get(client, endpoint, params=None, timeout=None, retry_attempts=None):
            node.gets.append(endpoint)
            return node.answer(client, endpoint, params or {})

        async def _post(client, endpoint, data=None):
            node.posts.append((endpoint, data))
            return {"tx_response": dict(node.tx_response)}

        monkeypatch.setattr(AsyncLCDClient, "_get", _get)
        monkeypatch.setattr(AsyncLCDClient, "_post", _post)

    def answer(self, client, endpoint: str, params: Dict[str, Any]) -> Any:
        if endpoint == "/registration/v1beta1/tx-key":
            if self.key_error is not None:
                raise self.key_error
            return {"key": base64.b64encode(self.CONSENSUS_KEY).decode()}
        if endpoint.startswith("/cosmos/auth/v1beta1/accounts/"):
            return {
                "account": {
                    "@type": "/cosmos.auth.v1beta1.BaseAccount",
                    "address": endpoint.rsplit("/", 1)[-1],
                    "account_number": 7,
                    "sequence": 3,
                }
            }
        if endpoint.startswith("/compute/v1beta1/code_hash/by_contract_address/"):
            return {"code_hash": self.CODE_HASH}
        if endpoint.startswith("/compute/v1beta1/query/"):
            if self.query_error is not None:
                raise self.query_error
            return {"data": self._sealed_balance(client, params["query"])}
        if endpoint.startswith("/cosmos/tx/v1beta1/txs/"):
            return self.tx_lookup
        raise AssertionError(f"unexpected LCD path {endpoint}")

    def _sealed_balance(self, client, query: str) -> str:
        nonce = list(base64.b64decode(query)[:32])
        key = client.encrypt_utils.get_tx_encryption_key(nonce)
        body = json.dumps({"balance": {"amount": self.balance}}).encode()
        sealed = SIV(key).seal(base64.b64encode(body), [bytes()])
        return base64.b64encode(sealed).decode()


class FakeLLM:
    def __init__(self, content: Any = "Let me trade for you.") -> None:
        self.content = content
        self.error: Optional[Exception] = None
        self.init_error: Optional[Exception] = None
        self.calls: List[List[Dict[str, str]]] = []
        self.closed = False

    async def initialize(self) -> None:
        if self.init_error is not None:
            raise self.init_error

    async def invoke(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return LLMReply(content=self.content)

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def store(tmp_path):
    conversation_store = ConversationStore(str(tmp_path / "memory.db"))
    yield conversation_store
    conversation_store.close()


@pytest.fixture
def route():
    return SwapRoute(
        offer_token=SUSDC,
        router_address="secret1router",
        pair_address="secret1pair",
        pair_code_hash="pairhash",
    )


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def storage_api():
    return FakeStorageApi()


@pytest.fixture
def lcd_node(monkeypatch):
    node = FakeLcdNode()
    node.install(monkeypatch)
    return node


@pytest.fixture
def storage_service():
    return FakeStorageService()
