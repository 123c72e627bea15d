"""Custom exception hierarchy for the dispatch pipeline."""


class DispatchError(Exception):
    """Base exception for all pipeline errors."""


class ConfigurationError(DispatchError):
    """Raised when settings are invalid, disabled, or missing. Never retried."""


class SettingsValidationError(ConfigurationError):
    """Raised when a settings patch fails field validation."""


class NoTemplateError(ConfigurationError):
    """Raised when the user has no active application template."""


class TransientIOError(DispatchError):
    """Raised when an external call times out or fails and may be retried."""


class GenerationError(TransientIOError):
    """Raised when the content generator fails or returns empty content."""


class TransportError(TransientIOError):
    """Raised when the mail transport rejects or cannot accept a message."""


class QuotaExceeded(DispatchError):
    """Signals that the user's daily quota is used up for this run."""


class ClassificationDeferred(DispatchError):
    """Raised when a recruiter response could not be classified yet."""


class InvalidTransition(DispatchError):
    """Raised when a status change would move a record backwards."""


class CorrelationError(DispatchError):
    """Raised when an inbound message matches no outbound mail."""
