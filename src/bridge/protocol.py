"""
Bridge protocol - Envelopes exchanged between the page and the relay.

Request:  {"kind": REQUEST_KIND, "method", "correlationId", "payload"}
Response: {"kind": RESPONSE_KIND, "method", "correlationId", "success", ...}
Event:    {"kind": EVENT_KIND, "event", "data"}
Cancel:   {"kind": CANCEL_KIND, "method", "correlationId"}

Only whitelisted fields ever cross from the service into a response.
"""

from typing import Optional

REQUEST_KIND = "SOLWALLET_REQUEST"
RESPONSE_KIND = "SOLWALLET_RESPONSE"
EVENT_KIND = "SOLWALLET_EVENT"
# Page gave up waiting; the relay abandons the work for that id
CANCEL_KIND = "SOLWALLET_CANCEL"

# Page-facing method names
METHOD_CONNECT = "connect"
METHOD_DISCONNECT = "disconnect"
METHOD_SIGN_TRANSACTION = "signTransaction"
METHOD_SIGN_AND_SEND = "signAndSendTransaction"

# Errors synthesized by the relay itself
UNKNOWN_METHOD = "UNKNOWN_METHOD"
FOREIGN_SENDER = "FOREIGN_SENDER"

# Result fields allowed through to the page
RESULT_FIELDS = ("publicKey", "signedTransaction", "signature")
# Failure fields allowed through to the page
FAILURE_FIELDS = ("error", "code", "reason")


def request_envelope(method: str, correlation_id: str, payload: Optional[dict] = None) -> dict:
    return {
        "kind": REQUEST_KIND,
        "method": method,
        "correlationId": correlation_id,
        "payload": payload or {},
    }


def response_envelope(method: str, correlation_id: str, result: dict) -> dict:
    """Re-wrap a service result for the page, copying only whitelisted fields."""
    success = bool(result.get("success"))
    envelope = {
        "kind": RESPONSE_KIND,
        "method": method,
        "correlationId": correlation_id,
        "success": success,
    }
    allowed = RESULT_FIELDS if success else FAILURE_FIELDS
    for key in allowed:
        if result.get(key) is not None:
            envelope[key] = result[key]
    if not success and "error" not in envelope:
        envelope["error"] = "Request failed"
    return envelope


def cancel_envelope(method: str, correlation_id: str) -> dict:
    return {"kind": CANCEL_KIND, "method": method, "correlationId": correlation_id}


def error_result(message: str, code: str) -> dict:
    return {"success": False, "error": message, "code": code}


def event_envelope(event: str, data: Optional[dict] = None) -> dict:
    return {"kind": EVENT_KIND, "event": event, "data": data or {}}


def is_request(data) -> bool:
    return isinstance(data, dict) and data.get("kind") == REQUEST_KIND


def is_response(data) -> bool:
    return isinstance(data, dict) and data.get("kind") == RESPONSE_KIND


def is_event(data) -> bool:
    return isinstance(data, dict) and data.get("kind") == EVENT_KIND


def is_cancel(data) -> bool:
    return isinstance(data, dict) and data.get("kind") == CANCEL_KIND
