"""Errors raised by the dispatch core and translated to HTTP responses in the API."""


class DispatchError(Exception):
    """Base class for dispatch failures."""


class ValidationError(DispatchError):
    """Malformed or missing fields on a submitted request."""


class NotFoundError(DispatchError):
    """Lookup or update against a request id that does not exist."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Emergency request {request_id} not found")
        self.request_id = request_id


class DirectoryUnavailable(DispatchError):
    """The provider directory could not be searched."""


class InvariantViolation(DispatchError):
    """An update would break a lifecycle invariant; nothing was written."""


class InvalidTransition(InvariantViolation):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move emergency request from {current} to {target}")
        self.current = current
        self.target = target
