# backend/stockledger/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Must land before db.init_app, which reads the database URI once
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services import cache_service
    cache_service.init_app(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.stock import stock_bp
    from .routes.transfers import transfers_bp
    from .routes.sales import sales_bp
    from .routes.services import services_bp
    from .routes.transactions import transactions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(services_bp)
    app.register_blueprint(transactions_bp)

    from .responses import error

    @app.errorhandler(404)
    def not_found(_e):
        return error(f"Route {request.path} not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return error(f"Method {request.method} not allowed on {request.path}", 405)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in set(app.config["CORS_ALLOWED_ORIGINS"]):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
