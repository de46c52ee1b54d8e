"""
Error taxonomy shared by every operation.

Each rejected precondition maps to exactly one of these classes so that
callers can branch on the type alone.
"""


class KeygroupsError(Exception):
    pass


class ValidationError(KeygroupsError):
    """
    An input field failed a shape check (length, character set, width).
    """

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Invalid value for {field}")


class AlreadyExists(KeygroupsError):
    """
    A record already occupies the derived address.
    """


class NotFound(KeygroupsError):
    """
    No record lives at the derived address.
    """


class PermissionDenied(KeygroupsError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Permission denied: {reason}")


class CapacityExceeded(KeygroupsError):
    """
    The group has reached its member cap.
    """


class InvalidState(KeygroupsError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid state: {reason}")
