# backend/fulfillment/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before extensions read the config
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services import notification_service
    notification_service.init_app(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cards import cards_bp
    from .routes.orders import orders_bp
    from .routes.wallet import wallet_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cards_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(wallet_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
