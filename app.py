import logging

from flask import Flask, jsonify, session

from config import Config
from models import db
from routes.expenses import expenses_bp
from routes.groups import groups_bp
from routes.settlements import settlements_bp
from services.errors import LedgerError

logger = logging.getLogger(__name__)


# --------------------------------------------------
# LOGGING
# --------------------------------------------------

def configure_logging(level):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# --------------------------------------------------
# ERRORS
# --------------------------------------------------

def handle_ledger_error(error):
    if error.status_code >= 500:
        logger.error("Request failed: %s", error.message, exc_info=error)
    return jsonify(error.to_dict()), error.status_code


# --------------------------------------------------
# APP SETUP
# --------------------------------------------------

def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)

    app.register_blueprint(expenses_bp)
    app.register_blueprint(settlements_bp)
    app.register_blueprint(groups_bp)
    app.register_error_handler(LedgerError, handle_ledger_error)

    @app.route("/")
    def index():
        return jsonify({"status": "ok", "authenticated": "user_id" in session})

    with app.app_context():
        db.create_all()

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
