"""
Custom exception hierarchy for the sync client.

Exception Hierarchy:
    StoreSyncError (base)
    ├── ChannelError     - Duplex channel could not be opened or used
    ├── APIError         - REST collaborator returned an error response
    └── PayloadError     - Inbound message has unexpected structure

    ValidationError      - Input validation failed
"""


class StoreSyncError(Exception):
    """Base exception for all sync client errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ChannelError(StoreSyncError):
    """
    Connection-level failure on the event channel.

    Never raised out of ChannelClient.send(); surfaced to callers of
    ChannelClient.open() and reported as a lifecycle ERROR event.
    """

    def __init__(self, message: str, details: str = None, url: str = None):
        super().__init__(message, details)
        self.url = url


class APIError(StoreSyncError):
    """
    REST endpoint returned an error response.

    Check status_code for specifics.
    """

    def __init__(self, message: str, details: str = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


class PayloadError(StoreSyncError):
    """
    Inbound message has unexpected structure.

    Raised while decoding progress events and their JSON payloads. The
    reducer catches it, logs it and keeps the previous status.
    """

    def __init__(self, message: str, details: str = None, stage: str = None):
        super().__init__(message, details)
        self.stage = stage


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating caller input (date ranges, page numbers) before use.
    """

    def __init__(self, field: str, message: str, value: any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"
