from __future__ import annotations

from flask import Blueprint

from .api import auth_required, float_field, get_datastore, page_args, success
from .records import parse_timestamp


bp = Blueprint("videos", __name__)


@bp.route("/", methods=["POST"])
@auth_required
def post_video(auth, payload):
    bv = get_datastore().post_video(
        auth,
        title=payload.get("title", ""),
        description=payload.get("description"),
        duration=float_field(payload, "duration"),
        public_time=parse_timestamp(payload.get("public_time")),
    )
    return success({"bv": bv}, "视频已投稿", 201)


@bp.route("/<bv>", methods=["PUT"])
@auth_required
def update_video(auth, payload, bv: str):
    needs_review = get_datastore().update_video_info(
        auth,
        bv,
        title=payload.get("title", ""),
        description=payload.get("description"),
        duration=float_field(payload, "duration"),
        public_time=parse_timestamp(payload.get("public_time")),
    )
    return success({"needs_review": needs_review}, "视频信息已更新")


@bp.route("/<bv>", methods=["DELETE"])
@auth_required
def delete_video(auth, payload, bv: str):
    get_datastore().delete_video(auth, bv)
    return success(message="视频已删除")


@bp.route("/search", methods=["POST"])
@auth_required
def search(auth, payload):
    page_size, page_num = page_args(payload)
    bvs = get_datastore().search_video(auth, payload.get("keywords", ""), page_size, page_num)
    return success({"bvs": bvs})


@bp.route("/<bv>/view-rate", methods=["GET"])
def view_rate(bv: str):
    return success({"rate": get_datastore().average_view_rate(bv)})


@bp.route("/<bv>/hotspot", methods=["GET"])
def hotspot(bv: str):
    return success({"chunks": get_datastore().get_hotspot(bv)})


@bp.route("/<bv>/review", methods=["POST"])
@auth_required
def review(auth, payload, bv: str):
    reviewed = get_datastore().review_video(auth, bv)
    return success({"reviewed": reviewed}, "审核通过" if reviewed else "视频已审核过")


@bp.route("/<bv>/coin", methods=["POST"])
@auth_required
def coin(auth, payload, bv: str):
    return success({"coined": get_datastore().coin_video(auth, bv)})


@bp.route("/<bv>/like", methods=["POST"])
@auth_required
def like(auth, payload, bv: str):
    return success({"liked": get_datastore().like_video(auth, bv)})


@bp.route("/<bv>/collect", methods=["POST"])
@auth_required
def collect(auth, payload, bv: str):
    return success({"collected": get_datastore().collect_video(auth, bv)})
