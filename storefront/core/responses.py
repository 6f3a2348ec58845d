from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder


def success_response(data: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body = {"success": True, "data": jsonable_encoder(data)}
    if meta:
        body["meta"] = jsonable_encoder(meta)
    return body


def error_body(error: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": False, "error": error}
