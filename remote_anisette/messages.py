from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

from ._codec import ResponseStatus, json_record, key, plist_record
from .transport import Frame

__all__ = [
    "ResponseStatus",
    "ProvisioningEndpoints",
    "StartProvisioningResponse",
    "EndProvisioningResponse",
    "AnisetteV3Response",
    "ErrorResponse",
    "HandshakeMessage",
    "GiveIdentifier",
    "GiveStartProvisioningData",
    "GiveEndProvisioningData",
    "ProvisioningSuccess",
    "Timeout",
    "ErrorMessage",
    "UnrecognizedMessage",
    "peek_result",
    "message_from_frame",
]

# Apple (GrandSlam) property list responses


@plist_record(envelope="urls")
@dataclass
class ProvisioningEndpoints:
    start_url: str = key("midStartProvisioning")
    end_url: str = key("midFinishProvisioning")


@plist_record(envelope="Response", status=True)
@dataclass
class StartProvisioningResponse:
    spim: str = key("spim")
    ptxid: Optional[str] = key("ptxid", default=None)


@plist_record(envelope="Response", status=True)
@dataclass
class EndProvisioningResponse:
    tk: str = key("tk")
    ptm: str = key("ptm")
    ptxid: Optional[str] = key("ptxid", default=None)
    routing_info: Optional[str] = key("X-Apple-I-MD-RINFO", default=None)


# Anisette v3 server JSON responses


@json_record
@dataclass
class AnisetteV3Response:
    one_time_password: str = key("X-Apple-I-MD")
    machine_id: str = key("X-Apple-I-MD-M")
    routing_info: str = key("X-Apple-I-MD-RINFO")


@json_record
@dataclass
class ErrorResponse:
    result: str = key("result")
    message: str = key("message")


# Provisioning session frames


@dataclass
class HandshakeMessage:
    pass


@json_record
@dataclass
class GiveIdentifier(HandshakeMessage):
    Result = "GiveIdentifier"


@json_record
@dataclass
class GiveStartProvisioningData(HandshakeMessage):
    Result = "GiveStartProvisioningData"


@json_record
@dataclass
class GiveEndProvisioningData(HandshakeMessage):
    Result = "GiveEndProvisioningData"

    cpim: str = key("cpim")


@json_record
@dataclass
class ProvisioningSuccess(HandshakeMessage):
    Result = "ProvisioningSuccess"

    adi_pb: str = key("adi_pb", repr=False)


@json_record
@dataclass
class Timeout(HandshakeMessage):
    Result = "Timeout"


@dataclass
class ErrorMessage(HandshakeMessage):
    """Any `result` the server sends that is not one of the known steps"""

    reason: str


@dataclass
class UnrecognizedMessage(HandshakeMessage):
    """A frame without a usable `result`, e.g. binary or not JSON"""

    frame: Frame


def peek_result(frame: Frame) -> Optional[str]:
    if not isinstance(frame, str):
        return None
    try:
        message = json.loads(frame)
    except ValueError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("result"), str):
        return None
    return message["result"]


def message_from_frame(frame: Frame) -> HandshakeMessage:
    """
    Decode a frame from the provisioning session

    Raises DecodeError if the frame names a known step but its payload is malformed
    """
    message_classes: dict[str, type[HandshakeMessage]] = {
        GiveIdentifier.Result: GiveIdentifier,
        GiveStartProvisioningData.Result: GiveStartProvisioningData,
        GiveEndProvisioningData.Result: GiveEndProvisioningData,
        ProvisioningSuccess.Result: ProvisioningSuccess,
        Timeout.Result: Timeout,
    }
    result = peek_result(frame)
    if result is None:
        return UnrecognizedMessage(frame)
    message_class = message_classes.get(result, None)
    if message_class:
        return message_class.from_json(frame)  # type: ignore
    else:
        return ErrorMessage(result)
