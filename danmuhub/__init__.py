import os
from pathlib import Path
from typing import Any, Mapping, Optional

from flask import Flask

from .api import register_error_handlers
from .datastore import DEFAULT_BUSY_TIMEOUT_MS, DataStore


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-key")
    app.config["DATA_DIR"] = os.getenv("DANMU_DATA_DIR", str(Path(app.root_path).parent / "data"))
    app.config["BUSY_TIMEOUT_MS"] = int(os.getenv("DANMU_BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS))
    if test_config:
        app.config.update(test_config)

    datastore = DataStore(Path(app.config["DATA_DIR"]), busy_timeout_ms=app.config["BUSY_TIMEOUT_MS"])
    app.extensions["datastore"] = datastore

    register_error_handlers(app)

    from .users import bp as users_bp
    from .videos import bp as videos_bp
    from .danmus import bp as danmus_bp
    from .recommend import bp as recommend_bp
    from .admin import bp as admin_bp

    app.register_blueprint(users_bp, url_prefix="/users")
    app.register_blueprint(videos_bp, url_prefix="/videos")
    app.register_blueprint(danmus_bp, url_prefix="/danmus")
    app.register_blueprint(recommend_bp, url_prefix="/recommend")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    return app
