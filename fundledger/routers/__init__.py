"""HTTP routers. Every endpoint answers {"success", "message", "data"}."""

from typing import Any


def ok(message: str, data: Any = None) -> dict:
    return {"success": True, "message": message, "data": data}
