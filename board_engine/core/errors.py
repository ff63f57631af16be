"""Exceptions raised by the chat2edit pipeline."""


class Chat2EditError(Exception):
    """Fatal pipeline error tagged with the request correlation id."""

    def __init__(self, message: str, request_id: str | None = None):
        super().__init__(message)
        self.message = (message or "").strip() or "Unknown error"
        self.request_id = request_id

    def tagged(self, request_id: str | None = None) -> str:
        """Render the message the caller sees, with the correlation id appended."""
        rid = request_id or self.request_id
        if not rid:
            return self.message
        return f"{self.message} (Request ID: {rid})"


class ModelConfigError(Chat2EditError):
    """No usable model configuration or credential."""


class ModelInvocationError(Chat2EditError):
    """The model backend failed or returned nothing usable."""


class DocumentLoadError(Chat2EditError):
    """Attached documents could not be loaded."""


class PersistenceError(Chat2EditError):
    """The batch document upsert failed."""


def tag_message(message: str, request_id: str) -> str:
    """Append a correlation id to an arbitrary error message."""
    return Chat2EditError(message, request_id).tagged()


class StoreConfigError(Chat2EditError):
    """The document store cannot be reached as the calling user."""
