"""Exception hierarchy for agent-statefold."""


class StatefoldError(Exception):
    """Base class for all agent-statefold errors."""


class ConfigurationError(StatefoldError):
    """Invalid option values or an unreadable configuration."""


class StructuralConfigError(ConfigurationError):
    """
    The state tree itself cannot be resolved.

    Raised while the resolver is built, before any turn is accepted.
    """

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = list(path or [])


class TreeDepthError(StructuralConfigError):
    """State tree nests deeper than the configured maximum."""


class CyclicTreeError(StructuralConfigError):
    """A state node appears among its own descendants."""


class StateNotFoundError(StatefoldError):
    """No leaf state matches and no fallback leaf is available."""
