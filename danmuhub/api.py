from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from flask import Flask, Response, current_app, jsonify, request

from .datastore import DataStore
from .records import AuthInfo


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


def success(data: Any = None, message: str = "ok", status: int = 200) -> Tuple[Response, int]:
    return (
        jsonify({"status": "success", "data": data if data is not None else {}, "message": message}),
        status,
    )


def error(message: str, status: int = 400) -> Tuple[Response, int]:
    return jsonify({"status": "error", "data": {}, "message": message}), status


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def int_field(source: Mapping[str, Any], key: str, default: Optional[int] = None) -> int:
    value = source.get(key, default)
    if value is None or value == "":
        raise ValueError(f"缺少参数：{key}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"参数格式错误：{key}") from None


def float_field(source: Mapping[str, Any], key: str) -> float:
    value = source.get(key)
    if value is None or value == "":
        raise ValueError(f"缺少参数：{key}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"参数格式错误：{key}") from None


def bool_arg(source: Mapping[str, Any], key: str) -> bool:
    value = source.get(key)
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def page_args(source: Mapping[str, Any]) -> Tuple[int, int]:
    return int_field(source, "page_size", 10), int_field(source, "page_num", 1)


def parse_auth(payload: Mapping[str, Any]) -> AuthInfo:
    raw = payload.get("auth")
    if not isinstance(raw, dict):
        raise PermissionError("缺少认证信息")
    return AuthInfo(
        mid=int_field(raw, "mid", 0),
        password=raw.get("password") or None,
        qq=raw.get("qq") or None,
        wechat=raw.get("wechat") or None,
    )


def auth_required(f: Callable[..., Any]) -> Callable[..., Any]:
    """Parse ``auth`` from the JSON body and pass it with the body to the view."""

    @wraps(f)
    def decorator(*args, **kwargs):
        payload = json_body()
        auth = parse_auth(payload)
        return f(auth, payload, *args, **kwargs)

    return decorator


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValueError)
    def handle_value_error(exc: ValueError):
        return error(str(exc), 400)

    @app.errorhandler(PermissionError)
    def handle_permission_error(exc: PermissionError):
        return error(str(exc), 403)

    @app.errorhandler(404)
    def handle_not_found(exc):
        return error("接口不存在", 404)

    @app.errorhandler(405)
    def handle_method_not_allowed(exc):
        return error("请求方法不被允许", 405)
