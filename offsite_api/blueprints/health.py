from flask import Blueprint, current_app, send_from_directory
from sqlalchemy import text

from offsite_api.common.http import ok, fail
from offsite_api.extensions import db

bp = Blueprint("health", __name__)


@bp.get("/api/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except Exception as e:
        current_app.logger.warning("health check db ping failed: %s", e)
        return fail("Database unavailable", status=503, code="DB_DOWN")
    return ok({"status": "ok"})


@bp.get("/files/<path:key>")
def local_file(key):
    # only meaningful for the local storage provider
    return send_from_directory(current_app.config["STORAGE_LOCAL_ROOT"], key)
