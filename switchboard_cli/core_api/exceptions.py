# switchboard_cli/core_api/exceptions.py
class SwitchboardError(Exception):
    """Base exception for Switchboard application errors."""

    def __init__(self, message, original_exception=None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class InvalidParameterError(SwitchboardError):
    """Indicates malformed input, e.g. a missing or empty panels list."""

    pass


class NotAuthenticatedError(SwitchboardError):
    """No stored credential exists; the user has never logged in."""

    pass


class SessionExpiredError(SwitchboardError):
    """A credential exists but was rejected (refresh failed, or Gmail answered 401/403)."""

    pass


class GmailApiError(SwitchboardError):
    """Indicates an error interacting with the Gmail API."""

    def __init__(self, message, original_exception=None, status=None):
        super().__init__(message, original_exception=original_exception)
        self.status = status


class RuleCompilationError(SwitchboardError):
    """A panel rule could not be translated into a Gmail search query."""

    def __init__(self, message, panel_name=None, original_exception=None):
        super().__init__(message, original_exception=original_exception)
        self.panel_name = panel_name


class PanelStorageError(SwitchboardError):
    """Indicates an error during panel storage operations."""

    pass
