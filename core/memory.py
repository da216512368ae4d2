import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import AgentError, LedgerError, StorageError
from .models import HistoryEntry

log = logging.getLogger(__name__)


class HistorySource(enum.Enum):
    LEDGER = "ledger"
    LOCAL = "local"
    NONE = "none"


@dataclass
class HistoryLoad:
    entries: List[HistoryEntry] = field(default_factory=list)
    source: HistorySource = HistorySource.NONE
    error: Optional[AgentError] = None


class MemoryReconciler:
    """Chooses which storage tier supplies a user's conversation history.

    The ledger is the system of record: when it has any entries for the user
    they are returned untouched and the local store is not consulted. The local
    store answers only when the ledger is empty or unreachable. The two tiers
    are never merged.
    """

    def __init__(self, ledger, store) -> None:
        self.ledger = ledger
        self.store = store

    async def load(self, user_id: str) -> HistoryLoad:
        ledger_error: Optional[AgentError] = None
        try:
            entries = await self.ledger.fetch_history(user_id)
        except LedgerError as exc:
            log.warning("Ledger history unavailable for %s, using local store: %s", user_id, exc)
            ledger_error = exc
            entries = []
        if entries:
            log.info("History from ledger found (entries): %d", len(entries))
            return HistoryLoad(entries=list(entries), source=HistorySource.LEDGER)

        try:
            turns = await self.store.read_history(user_id)
        except StorageError as exc:
            log.warning("Local history unavailable for %s: %s", user_id, exc)
            return HistoryLoad(error=exc)
        log.info("History from local store found (entries): %d", len(turns))
        return HistoryLoad(
            entries=[turn.as_entry() for turn in turns],
            source=HistorySource.LOCAL if turns else HistorySource.NONE,
            error=ledger_error,
        )

    async def load_history(self, user_id: str) -> List[HistoryEntry]:
        return (await self.load(user_id)).entries
