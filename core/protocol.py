"""Plughost - Protocol Codec

Newline-delimited JSON between host and plugins, one object per line.

Plugin -> host requests:
    {"method": "send",   "params": ["<server-address>", "<raw-text>"], "id": 7}
    {"method": "cmdadd", "params": ["<command-name>"],                 "id": 2}
    {"method": "pid",    "params": ["<pid-as-string>"],                "id": null}

Host -> plugin notifications always carry "id": null; responses carry
"result", "error" and the originating request id.
"""

from __future__ import annotations
import json
import math
from typing import Any, Dict, Optional, Union

from core.errors import (
    InvalidCorrelationId,
    MalformedMessage,
    MissingCorrelationId,
    UnknownMethod,
    UnsupportedMessage,
)
from models.models import (
    Deliver,
    DeliverCommand,
    Failure,
    Quit,
    RegisterCommandRequest,
    ReportPidRequest,
    SendRequest,
    Success,
)

Request = Union[SendRequest, RegisterCommandRequest, ReportPidRequest]
Command = Union[Deliver, DeliverCommand, Quit, Success, Failure]

REQUEST_FIELDS = ("method", "params", "id")
RESPONSE_FIELDS = ("result", "error", "id")

ERROR_RESULT = "error"
MAX_PID_DIGITS = 20


# --- Decoding ---

def decode_request(line: Union[str, bytes]) -> Request:
    """Decode one wire line into a typed request.

    Raises a ProtocolError subclass for every shape that is not accepted;
    never returns a partially-decoded request.
    """
    try:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        msg = json.loads(line)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, UnicodeDecodeError and the int digit limit are
        # all ValueErrors
        raise MalformedMessage(f"Invalid JSON: {str(e)[:100]}") from None

    if not isinstance(msg, dict):
        raise MalformedMessage(
            f"Expected a JSON object, got {type(msg).__name__}"
        )

    if not all(key in msg for key in REQUEST_FIELDS):
        if all(key in msg for key in RESPONSE_FIELDS):
            raise UnsupportedMessage("Responses from plugins are not supported")
        missing = [key for key in REQUEST_FIELDS if key not in msg]
        raise MalformedMessage(f"Missing fields: {', '.join(missing)}")

    method = msg["method"]
    params = msg["params"]
    if not isinstance(method, str):
        raise MalformedMessage("method must be a string")
    if not isinstance(params, list):
        raise MalformedMessage("params must be an array")

    if method == "send":
        server, text = _string_params(method, params, 2)
        return SendRequest(server, text, _required_id(method, msg["id"]))

    if method == "cmdadd":
        (command,) = _string_params(method, params, 1)
        return RegisterCommandRequest(command, _required_id(method, msg["id"]))

    if method == "pid":
        (raw_pid,) = _string_params(method, params, 1)
        return ReportPidRequest(_parse_pid(raw_pid))

    raise UnknownMethod(method)


def _string_params(method: str, params: list, count: int) -> tuple:
    if len(params) != count:
        raise MalformedMessage(
            f"{method}: expected {count} params, got {len(params)}"
        )
    for i, value in enumerate(params):
        if not isinstance(value, str):
            raise MalformedMessage(
                f"{method}: params[{i}] must be a string, "
                f"got {type(value).__name__}"
            )
    return tuple(params)


def _required_id(method: str, raw_id: Any) -> int:
    if raw_id is None:
        raise MissingCorrelationId(method)
    return parse_correlation_id(raw_id)


def parse_correlation_id(raw_id: Any) -> int:
    """Accept an integral JSON number as an id.

    Non-integral numbers are rejected rather than truncated: 1.5 has no
    meaningful integer counterpart.
    """
    # bool is an int subclass; true/false are not ids
    if isinstance(raw_id, bool):
        raise InvalidCorrelationId("id must be a number, got boolean")
    if isinstance(raw_id, int):
        return raw_id
    if isinstance(raw_id, float):
        if math.isfinite(raw_id) and raw_id.is_integer():
            return int(raw_id)
        raise InvalidCorrelationId(f"id must be integral, got {raw_id!r}")
    raise InvalidCorrelationId(
        f"id must be a number, got {type(raw_id).__name__}"
    )


def _parse_pid(raw_pid: str) -> int:
    stripped = raw_pid.strip()
    if (not stripped.isdigit() or not stripped.isascii()
            or len(stripped) > MAX_PID_DIGITS):
        raise MalformedMessage(f"pid: {raw_pid[:50]!r} is not an integer")
    return int(stripped)


# --- Encoding ---

def command_to_json(command: Command) -> Dict[str, Any]:
    """Build the wire object for a host -> plugin command."""
    if isinstance(command, Deliver):
        return _notification("recv", [
            command.event.to_json(),
            command.connection_info.to_json(),
        ])
    if isinstance(command, DeliverCommand):
        return _notification("cmd", [
            command.event.to_json(),
            command.connection_info.to_json(),
            command.prefix,
            command.remainder,
        ])
    if isinstance(command, Quit):
        return _notification("quit", [])
    if isinstance(command, Success):
        return _response(command.message, None, command.request_id)
    if isinstance(command, Failure):
        return _response(ERROR_RESULT, command.message, command.request_id)
    raise TypeError(f"Not a plugin command: {type(command).__name__}")


def encode_command(command: Command) -> str:
    """Encode a command as one compact JSON line (without the newline)."""
    return json.dumps(
        command_to_json(command), separators=(",", ":"), ensure_ascii=False
    )


def _notification(method: str, params: list) -> Dict[str, Any]:
    return {"method": method, "params": params, "id": None}


def _response(result: str, error: Optional[str], request_id: int) -> Dict[str, Any]:
    return {"result": result, "error": error, "id": request_id}
