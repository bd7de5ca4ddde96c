"""Failure conditions raised by the stores, tools and orchestrator."""


class LedgerError(Exception):
    """Base class for every condition the orchestrator knows how to answer."""


class NotFound(LedgerError):
    """A referenced transaction, session or memory entry is missing or expired."""


class InvalidState(LedgerError):
    """A session is in a state the current handler does not expect."""


class ExternalServiceFailure(LedgerError):
    """The decision engine or another network collaborator failed."""


class InvalidArguments(LedgerError, ValueError):
    """Arguments were rejected by a tool's parameter validation."""


class ToolNotFound(LedgerError):
    """A decision referenced a tool that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class PersistenceFailure(LedgerError):
    """A ledger or store write failed unexpectedly."""
