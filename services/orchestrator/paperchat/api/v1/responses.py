"""统一响应信封：{success, data, meta?} 或 {success: false, error{code, message}}。"""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

MAX_PAGE_LIMIT = 100
DEFAULT_PAGE_LIMIT = 20


def success_response(data: Any, meta: dict[str, Any] | None = None, status_code: int = 200) -> JSONResponse:
    payload: dict[str, Any] = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return JSONResponse(jsonable_encoder(payload), status_code=status_code)


def error_response(code: str, message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"success": False, "error": {"code": code, "message": message}}, status_code=status_code)


def bad_request(message: str = "Bad request") -> JSONResponse:
    return error_response("BAD_REQUEST", message, 400)


def not_found(message: str = "Resource not found") -> JSONResponse:
    return error_response("NOT_FOUND", message, 404)


def internal_error(message: str = "Internal server error") -> JSONResponse:
    return error_response("INTERNAL_ERROR", message, 500)


def pagination_params(page: int | None, limit: int | None) -> tuple[int, int, int]:
    """page 至少为 1，limit 限制在 [1, 100]；返回 (page, limit, offset)。"""
    page = max(1, page or 1)
    limit = min(MAX_PAGE_LIMIT, max(1, limit or DEFAULT_PAGE_LIMIT))
    return page, limit, (page - 1) * limit


def pagination_meta(page: int, limit: int, total: int) -> dict[str, Any]:
    return {"page": page, "limit": limit, "total": total, "has_more": page * limit < total}
