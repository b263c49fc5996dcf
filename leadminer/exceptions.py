"""Exception hierarchy for LeadMiner.

Adapters raise these at their boundary; call sites in the mining pipeline
catch them and degrade to "not resolved" except where noted.
"""


class LeadMinerError(Exception):
    """Base class for all LeadMiner errors."""


class ConfigurationError(LeadMinerError):
    """Required credentials or settings are missing. Fatal at session start."""


class NoSeedDataError(LeadMinerError):
    """Discovery search produced zero companies. Fatal for the session."""


class AIRequestError(LeadMinerError):
    """The completion endpoint returned a non-success response."""


class MalformedResponse(LeadMinerError):
    """A completion could not be parsed into a JSON object."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class BudgetExhausted(LeadMinerError):
    """The per-session request budget for a provider is spent."""

    def __init__(self, provider: str):
        super().__init__(f"{provider} request budget exhausted")
        self.provider = provider


class SessionConflictError(LeadMinerError):
    """A mining session with the requested id already exists."""
