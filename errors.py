"""Exceptions for the MyQ garage door bridge."""

from __future__ import annotations


class MyQError(Exception):
    """Base class for all bridge errors."""


class ApiError(MyQError):
    """The MyQ API answered with a non-success ReturnCode."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class SessionExpiredError(ApiError):
    """The security token is no longer accepted by the API."""


class ResolutionError(MyQError):
    """A device or attribute could not be resolved."""


class ObstructionError(MyQError):
    """A door command was refused because an obstruction is detected."""


class DoorStateError(MyQError):
    """The API reported a door state code we do not know."""


class ResponseError(MyQError):
    """The API answered with a body that is not a JSON object."""
