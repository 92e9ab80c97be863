import logging
import time
from datetime import datetime
from flask import Flask, jsonify, g
from flask_cors import CORS
from sqlalchemy import text
from config import Config
from extensions import db
from navigation import NavigationInvariantError


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    CORS(app, expose_headers=["X-Total-Count", "X-Request-Time", "X-API-Version"])
    db.init_app(app)

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("navigation").setLevel(level)

    # ─── REQUEST HOOKS ────────────────────────────────────────
    @app.before_request
    def start_timer():
        g.start_time = time.time()

    @app.after_request
    def add_headers(response):
        if hasattr(g, "start_time"):
            elapsed = round((time.time() - g.start_time) * 1000, 2)
            response.headers["X-Request-Time"] = f"{elapsed}ms"
        response.headers["X-API-Version"] = app.config["API_VERSION"]
        return response

    # ─── ERROR HANDLERS ───────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(NavigationInvariantError)
    def navigation_invariant(e):
        app.logger.exception("Navigation invariant violated: %s", e)
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    # ─── HEALTH ───────────────────────────────────────────────
    @app.get("/health")
    def health():
        try:
            db.session.execute(text("SELECT 1"))
            db_ok = True
        except Exception as exc:
            app.logger.warning("Health check database ping failed: %s", exc)
            db_ok = False
        return jsonify({
            "status": "ok" if db_ok else "degraded",
            "database": "connected" if db_ok else "error",
            "timestamp": datetime.utcnow().isoformat(),
            "version": app.config["API_VERSION"],
        })

    from routes.forms import forms_bp
    from routes.sections import sections_bp
    from routes.responses import responses_bp

    app.register_blueprint(forms_bp)
    app.register_blueprint(sections_bp)
    app.register_blueprint(responses_bp)

    with app.app_context():
        db.create_all()

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
