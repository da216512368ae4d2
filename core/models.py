import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

MEMORY_RECORD_TYPE = "memory"


@dataclass(frozen=True)
class ConversationTurn:
    user_id: str
    message: str
    response: str
    timestamp: float = field(default_factory=time.time)

    def as_entry(self) -> "HistoryEntry":
        return HistoryEntry(message=self.message, response=self.response)


@dataclass(frozen=True)
class HistoryEntry:
    message: str
    response: str


@dataclass(frozen=True)
class LedgerRecord:
    """A conversation turn as it is uploaded to the durable ledger."""

    user_id: str
    message: str
    response: str

    def to_bytes(self) -> bytes:
        payload = {
            "user_id": self.user_id,
            "message": self.message,
            "response": self.response,
        }
        return json.dumps(payload, ensure_ascii=False).encode("utf-8")

    def tags(self) -> List[Dict[str, str]]:
        return [
            {"name": "Content-Type", "value": "application/json"},
            {"name": "User-ID", "value": self.user_id},
            {"name": "Type", "value": MEMORY_RECORD_TYPE},
        ]

    @classmethod
    def from_bytes(cls, raw: bytes) -> "LedgerRecord":
        payload: Any = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("ledger record is not a JSON object")
        return cls(
            user_id=str(payload.get("user_id") or ""),
            message=str(payload.get("message") or ""),
            response=str(payload.get("response") or ""),
        )

    def as_entry(self) -> HistoryEntry:
        return HistoryEntry(message=self.message, response=self.response)
