from __future__ import annotations

from flask import Blueprint

from .api import auth_required, get_datastore, json_body, success


bp = Blueprint("users", __name__)


@bp.route("/", methods=["POST"])
def register():
    payload = json_body()
    mid = get_datastore().register_user(
        name=payload.get("name", ""),
        password=payload.get("password", ""),
        sex=payload.get("sex"),
        birthday=payload.get("birthday"),
        sign=payload.get("sign"),
        qq=payload.get("qq"),
        wechat=payload.get("wechat"),
    )
    return success({"mid": mid}, "注册成功", 201)


@bp.route("/<int:mid>", methods=["GET"])
def user_info(mid: int):
    return success(get_datastore().get_user_info(mid))


@bp.route("/<int:mid>", methods=["DELETE"])
@auth_required
def delete_account(auth, payload, mid: int):
    get_datastore().delete_account(auth, mid)
    return success(message="账号已删除")


@bp.route("/<int:mid>/follow", methods=["POST"])
@auth_required
def follow(auth, payload, mid: int):
    following = get_datastore().follow(auth, mid)
    return success({"following": following}, "已关注" if following else "已取消关注")
