from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


def error(message: str, code: str = "error", status: int = 400, data: Optional[Dict[str, Any]] = None):
    content: Dict[str, Any] = {
        "ok": False,
        "error": code,
        "message": message,
    }
    if data:
        content["data"] = data
    return JSONResponse(status_code=status, content=content)


def outcome(success: bool, message: str, data: Optional[Dict[str, Any]] = None, status: Optional[int] = None):
    """
    Storefront-facing shape: {success, message, ...data}. Themes already parse
    this, so it stays flat instead of using the error envelope.
    """
    body: Dict[str, Any] = {"success": success, "message": message}
    body.update(data or {})
    return JSONResponse(status_code=status or (200 if success else 400), content=body)
