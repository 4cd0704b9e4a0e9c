from __future__ import annotations

from flask import Blueprint, request

from .api import auth_required, get_datastore, page_args, success


bp = Blueprint("recommend", __name__)


@bp.route("/next/<bv>", methods=["GET"])
def next_video(bv: str):
    return success({"bvs": get_datastore().recommend_next_video(bv)})


@bp.route("/general", methods=["GET"])
def general():
    page_size, page_num = page_args(request.args)
    return success({"bvs": get_datastore().general_recommendations(page_size, page_num)})


@bp.route("/videos", methods=["POST"])
@auth_required
def for_user(auth, payload):
    page_size, page_num = page_args(payload)
    return success({"bvs": get_datastore().recommend_videos_for_user(auth, page_size, page_num)})


@bp.route("/friends", methods=["POST"])
@auth_required
def friends(auth, payload):
    page_size, page_num = page_args(payload)
    return success({"mids": get_datastore().recommend_friends(auth, page_size, page_num)})
