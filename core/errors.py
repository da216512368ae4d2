"""Error taxonomy shared by the agent and its collaborators."""


class AgentError(Exception):
    """Base class for every failure the agent knows how to classify."""


class InitializationError(AgentError):
    """Collaborator setup failed; the agent must not start."""


class StorageError(AgentError):
    """The local conversation store could not be read or written."""


class LedgerError(AgentError):
    """The durable memory ledger rejected a write or could not be read."""


class NetworkError(AgentError):
    """An LLM, balance or quote call failed in transport."""


class TradeError(AgentError):
    """Broadcasting or confirming a swap transaction failed."""
