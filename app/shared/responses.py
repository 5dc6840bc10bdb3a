"""Response envelope shared by every endpoint: {success, data?, message?, error?}"""

from typing import Any, Optional


def success(data: Any = None, message: Optional[str] = None, **extra) -> dict:
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body


def failure(message: str, code: str, details: Optional[Any] = None) -> dict:
    error: dict = {"message": message, "code": code}
    if details is not None:
        error["details"] = details
    return {"success": False, "message": message, "error": error}


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": (total + limit - 1) // limit if limit else 0,
    }
