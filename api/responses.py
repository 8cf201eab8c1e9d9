"""
FundedDesk – JSON envelopes.
{"success": true, "data": ..., "message"?} / {"success": false, "error": ..., "details"?}
"""
from typing import Any, Dict, Optional

def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body

def failure(error: str, details: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        body["details"] = details
    return body
