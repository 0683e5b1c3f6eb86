"""cigate: run CI workflow templates with input validation and metric gates."""

from typing import Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from cigate.api.routes import api_bp
from cigate.backends import ExecutionBackend, create_backend
from cigate.config import Config
from cigate.pipeline.loader import TemplateCatalog


def create_app(
    catalog: Optional[TemplateCatalog] = None,
    backend: Optional[ExecutionBackend] = None,
) -> Flask:
    """
    Build the API application.

    The catalog and backend are shared by every request; either may be
    injected, otherwise they come from Config.
    """
    app = Flask(__name__)
    app.config.from_object(Config)

    if catalog is None:
        catalog = TemplateCatalog.from_yaml(Config.CATALOG_PATH)
    if backend is None:
        backend = create_backend(Config.BACKEND, url=Config.BACKEND_URL, log_dir=Config.LOG_DIR or None)
    app.extensions["cigate"] = {"catalog": catalog, "backend": backend}

    app.register_blueprint(api_bp)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"error": e.name, "message": e.description}), e.code

    return app
