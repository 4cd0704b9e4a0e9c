from __future__ import annotations

from flask import Blueprint, current_app, request

from .api import auth_required, get_datastore, int_field, success


bp = Blueprint("admin", __name__)


@bp.route("/ping", methods=["GET"])
def ping():
    a = int_field(request.args, "a", 1)
    b = int_field(request.args, "b", 1)
    return success({"sum": get_datastore().sum(a, b)})


@bp.route("/status", methods=["GET"])
def status():
    datastore = get_datastore()
    return success({"ready": datastore.is_ready(), "row_counts": datastore.row_counts()})


@bp.route("/truncate", methods=["POST"])
@auth_required
def truncate(auth, payload):
    datastore = get_datastore()
    mid = datastore.require_super(auth)
    datastore.truncate()
    current_app.logger.info("超级用户 %s 清空了全部数据", mid)
    return success(message="数据已清空")
