"""Response envelope helpers."""
from typing import Any, Optional

from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder


def ok(data: Any = None) -> dict[str, Any]:
    """Successful envelope."""
    return {"success": True, "data": data}


def error_response(status_code: int, code: str, message: str, details: Optional[Any] = None) -> JSONResponse:
    """Failed envelope with a structured error."""
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": False, "error": error}),
    )
