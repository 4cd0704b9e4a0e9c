from __future__ import annotations

from flask import Blueprint, request

from .api import auth_required, bool_arg, float_field, get_datastore, success


bp = Blueprint("danmus", __name__)


@bp.route("/", methods=["POST"])
@auth_required
def send(auth, payload):
    danmu_id = get_datastore().send_danmu(
        auth,
        payload.get("bv", ""),
        payload.get("content", ""),
        float_field(payload, "time"),
    )
    return success({"danmu_id": danmu_id}, "弹幕已发送", 201)


@bp.route("/", methods=["GET"])
def display():
    args = request.args
    danmu_ids = get_datastore().display_danmu(
        args.get("bv", ""),
        float_field(args, "start"),
        float_field(args, "end"),
        filter_duplicates=bool_arg(args, "filter"),
    )
    return success({"danmu_ids": danmu_ids})


@bp.route("/<int:danmu_id>/like", methods=["POST"])
@auth_required
def like(auth, payload, danmu_id: int):
    return success({"liked": get_datastore().like_danmu(auth, danmu_id)})
