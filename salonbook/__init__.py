from collections.abc import Mapping

from flask import Flask
from flask_cors import CORS

from .clock import Clock
from .config import Config, engine_options
from .errors import SchedulingError
from .events import register_default_subscribers
from .extensions import db
from .routes import bp, error_response


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    app.config.from_object(Config)
    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)
    app.config.from_envvar("APP_SETTINGS", silent=True)

    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options(app.config["SQLALCHEMY_DATABASE_URI"], app.config["STORE_TIMEOUT_SECONDS"]),
    )
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)

    # Allow booking frontends to talk to the engine
    CORS(app,
         origins=app.config["CORS_ORIGINS"],
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PATCH", "OPTIONS"]
    )

    app.register_blueprint(bp)
    app.register_error_handler(SchedulingError, error_response)

    app.extensions["salonbook.events"] = register_default_subscribers()
    app.extensions["salonbook.clock"] = Clock()

    return app
