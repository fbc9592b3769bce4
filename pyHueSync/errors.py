"""Exception hierarchy for pyHueSync.

All exceptions raised by the library derive from :class:`HueSyncError`::

    HueSyncError
     ├── TransportError            connect / timeout / reset
     │    └── HttpError            unexpected HTTP status
     ├── ProtocolError             malformed payload
     │    ├── TlvDecodeError
     │    └── CharacteristicMismatchError
     ├── ApiError                  error entry in a response body
     │    └── LinkButtonNotPressedError
     ├── CertificateError
     ├── ConfigurationError
     └── UnsupportedBridgeError
"""

from __future__ import annotations

from typing import Optional

from pyHueSync.enums import (
    NON_CRITICAL_ERRORS,
    TRANSIENT_ERRORS,
    ApiErrorType,
)


class HueSyncError(Exception):
    """Base class of all pyHueSync errors."""


# ---- transport ------------------------------------------------------------


class TransportError(HueSyncError):
    """A request could not be completed.

    Parameters
    ----------
    message:
        Human readable description.
    method:
        HTTP method of the failed request.
    resource:
        Resource path of the failed request.
    transient:
        ``True`` when the request may succeed if retried.
    """

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        resource: Optional[str] = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.resource = resource
        self.transient = transient


class HttpError(TransportError):
    """The bridge answered with a non-200 HTTP status."""

    def __init__(
        self,
        status: int,
        *,
        method: Optional[str] = None,
        resource: Optional[str] = None,
    ) -> None:
        super().__init__(
            "http status %d" % status,
            method=method,
            resource=resource,
            transient=status == 503,
        )
        self.status = status


# ---- protocol -------------------------------------------------------------


class ProtocolError(HueSyncError):
    """A payload could not be parsed."""


class TlvDecodeError(ProtocolError):
    """Malformed TLV buffer."""


class CharacteristicMismatchError(ProtocolError):
    """An adaptive-lighting payload refers to another characteristic."""


# ---- api ------------------------------------------------------------------


class ApiError(HueSyncError):
    """An ``error`` entry in a bridge response.

    Parameters
    ----------
    type:
        The numeric error type.
    address:
        The resource address the error refers to.
    description:
        The bridge's description of the error.
    """

    def __init__(
        self,
        type: int,
        address: str = "",
        description: str = "",
    ) -> None:
        super().__init__(
            "%s: api error %d: %s" % (address, type, description)
        )
        self.type = type
        self.address = address
        self.description = description

    @property
    def critical(self) -> bool:
        """Whether the error aborts processing of the response."""
        return self.type not in NON_CRITICAL_ERRORS

    @property
    def transient(self) -> bool:
        """Whether the bridge asked us to try again later."""
        return self.type in TRANSIENT_ERRORS

    @classmethod
    def from_entry(cls, entry: dict) -> "ApiError":
        """Build the matching subclass from an ``error`` entry."""
        error_type = int(entry.get("type", 0))
        klass = cls
        if error_type == ApiErrorType.LINK_BUTTON_NOT_PRESSED:
            klass = LinkButtonNotPressedError
        return klass(
            error_type,
            entry.get("address", ""),
            entry.get("description", ""),
        )


class LinkButtonNotPressedError(ApiError):
    """The bridge refused to create a username: link button not pressed."""


# ---- other ----------------------------------------------------------------


class CertificateError(HueSyncError):
    """The bridge presented an unexpected TLS certificate."""


class ConfigurationError(HueSyncError):
    """Invalid option value or unusable device description."""


class UnsupportedBridgeError(HueSyncError):
    """The host does not run a supported bridge."""
