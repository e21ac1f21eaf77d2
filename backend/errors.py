# backend/errors.py


class StudioError(Exception):
    """Base class for every error the orchestrator raises on purpose."""


class ValidationError(StudioError):
    """Selection rules not met. Raised before any network activity."""


class SelectionLimitError(ValidationError):
    def __init__(self, limit: int):
        super().__init__(f"You can select up to {limit} features.")
        self.limit = limit


class MissingContextError(ValidationError):
    """User or project identity is missing, so nothing can be submitted."""


class DispatchFailure(StudioError):
    """Hard transport or response failure for one attempt."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationTimeout(StudioError):
    """The job was accepted but no result showed up within dispatch + poll budget."""


class StoreError(StudioError):
    """An external store (jobs, assets, projects) rejected or failed a call."""


class ModeSwitchLocked(StudioError):
    pass


class InvalidTransition(StudioError):
    pass


class PersistenceWarning(UserWarning):
    """A side effect after a successful render failed; the result is still shown."""
