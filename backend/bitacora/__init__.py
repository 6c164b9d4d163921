import logging
from typing import Optional

from flask import Flask
from flask_cors import CORS

from .config import Config


def create_app(testing: bool = False, services=None):
    """
    Application factory.

    Args:
        testing: Enables Flask TESTING (and the X-Test-User-Id auth seam)
        services: Prebuilt Services container; built from the environment when omitted
    """
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = Flask(__name__)
    app.config["TESTING"] = testing

    # CORS configuration for development and production
    allowed_origins = [
        "http://localhost:5173",  # Local Vite dev server
        "http://localhost:3000",
    ]

    # Add production frontend URL if set
    frontend_url: Optional[str] = Config.FRONTEND_URL
    if frontend_url:
        allowed_origins.append(frontend_url)

    # In development, allow all origins for easier testing
    if Config.FLASK_ENV == "development":
        CORS(app)
    else:
        CORS(app, origins=allowed_origins)

    if services is None:
        from .services.container import create_services

        services = create_services()
    app.extensions["services"] = services

    from .routes import bp as api_bp
    app.register_blueprint(api_bp, url_prefix="/api")

    return app
