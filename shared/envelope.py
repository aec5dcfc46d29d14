"""
Uniform response envelope exchanged by every Orderly service.

An envelope is either ``Ok(data)`` or ``Err(code, message)``. On the wire the
two variants serialize to::

    {"success": true, "data": <any>}
    {"success": false, "error": {"code": <str>, "message": <str>}}
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Union


@dataclass(frozen=True)
class Ok:
    """Successful envelope carrying a payload."""

    data: Any = None
    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "data": self.data}


@dataclass(frozen=True)
class Err:
    """Failed envelope carrying an error code and message."""

    code: str
    message: str
    success = False

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": {"code": self.code, "message": self.message}}


Envelope = Union[Ok, Err]


class MalformedEnvelopeError(ValueError):
    """Raised when a payload does not have the envelope shape."""


def parse_envelope(payload: Any) -> Envelope:
    """Decode a JSON payload into an envelope variant."""
    if not isinstance(payload, Mapping) or not isinstance(payload.get("success"), bool):
        raise MalformedEnvelopeError("payload is not an envelope")

    if payload["success"]:
        return Ok(payload.get("data"))

    error = payload.get("error")
    if not isinstance(error, Mapping) or not isinstance(error.get("code"), str):
        raise MalformedEnvelopeError("failed envelope without an error code")
    return Err(error["code"], str(error.get("message", "")))


def ok(data: Any = None) -> Dict[str, Any]:
    """Shortcut for a serialized success envelope."""
    return Ok(data).to_dict()


def err(code: str, message: str) -> Dict[str, Any]:
    """Shortcut for a serialized error envelope."""
    return Err(code, message).to_dict()
