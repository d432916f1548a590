import logging

from flask import Flask, jsonify
from flask_apscheduler import APScheduler
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import config
from database.db import init_db, make_engine, make_session_factory
from database.repository import ReadingRepository
from extensions import limiter
from recognition.gemini_client import GeminiRecognitionClient
from routes.readings import readings_bp
from services.image_store import ImageStore
from services.ingestion import IngestionPipeline
from services.lifecycle import LifecycleController
from services.listing import ReadingQuery
from utils import error_response

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("meter-reading-backend")


def _default_config() -> dict:
    return {
        "DEBUG": config.DEBUG,
        # Limit maximum body size, base64 images are large
        "MAX_CONTENT_LENGTH": config.MAX_CONTENT_LENGTH,
        "DATABASE_URL": config.DATABASE_URL,
        "READINGS_URL_PREFIX": config.READINGS_URL_PREFIX,
        "API_CORS_ORIGINS": config.API_CORS_ORIGINS,
        "GEMINI_API_KEY": config.GEMINI_API_KEY,
        "AI_MODEL_NAME": config.AI_MODEL_NAME,
        "RECOGNITION_TIMEOUT_SECONDS": config.RECOGNITION_TIMEOUT_SECONDS,
        "UPLOAD_FOLDER": config.UPLOAD_FOLDER,
        "STAGED_FILE_MAX_AGE_HOURS": config.STAGED_FILE_MAX_AGE_HOURS,
        "SCHEDULER_ENABLED": config.SCHEDULER_ENABLED,
        "CLEANUP_CRON_HOUR": config.CLEANUP_CRON_HOUR,
        # flask-limiter
        "RATELIMIT_ENABLED": True,
        "RATELIMIT_DEFAULT": config.RATE_LIMIT_DEFAULTS,
        "RATELIMIT_STORAGE_URI": config.RATE_LIMIT_STORAGE_URI,
        "UPLOAD_RATE_LIMIT": config.UPLOAD_RATE_LIMIT,
    }


def create_app(config_overrides: dict = None, recognition_client=None) -> Flask:
    """
    Build the Flask app and wire its collaborators.

    The database engine, recognition client and image store live as long as
    the app; services get them through their constructors.
    """
    app = Flask(__name__)
    app.config.update(_default_config())
    if config_overrides:
        app.config.update(config_overrides)

    # CORS Configuration
    cors_origins = app.config["API_CORS_ORIGINS"].split(",") if app.config["API_CORS_ORIGINS"] else ["*"]
    CORS(app, resources={r"/api/*": {"origins": cors_origins}})

    # Rate Limiting
    limiter.init_app(app)

    engine = make_engine(app.config["DATABASE_URL"])
    init_db(engine)
    repository = ReadingRepository(make_session_factory(engine))

    if recognition_client is None:
        recognition_client = GeminiRecognitionClient(
            api_key=app.config["GEMINI_API_KEY"],
            model_name=app.config["AI_MODEL_NAME"],
            timeout=app.config["RECOGNITION_TIMEOUT_SECONDS"],
        )

    image_store = ImageStore(app.config["UPLOAD_FOLDER"])

    app.extensions["readings"] = {
        "engine": engine,
        "image_store": image_store,
        "ingestion": IngestionPipeline(repository, recognition_client, image_store),
        "lifecycle": LifecycleController(repository),
        "query": ReadingQuery(repository),
    }

    app.register_blueprint(readings_bp, url_prefix=app.config["READINGS_URL_PREFIX"])

    @app.route("/api/health", methods=["GET"])
    def health_check():
        """
        Basic healthcheck endpoint.
        """
        return jsonify({"status": "ok"}), 200

    @app.errorhandler(RequestEntityTooLarge)
    def handle_file_too_large(e):
        return error_response(
            "PAYLOAD_TOO_LARGE",
            f"Request body is too large (max {app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)}MB).",
            413,
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        """
        Global error handler - log the detail, return a generic message.
        """
        if isinstance(e, HTTPException):
            # Pass Flask/werkzeug HTTP errors through unchanged
            return e

        logger.exception("Unexpected server error")
        return error_response("INTERNAL_ERROR", "An unexpected error occurred. Please try again.", 500)

    if app.config["SCHEDULER_ENABLED"]:
        _start_cleanup_scheduler(app, image_store)

    return app


def _start_cleanup_scheduler(app: Flask, image_store: ImageStore):
    scheduler = APScheduler()
    scheduler.init_app(app)

    max_age_hours = app.config["STAGED_FILE_MAX_AGE_HOURS"]

    def scheduled_cleanup():
        logger.info("Running scheduled staged image cleanup job...")
        image_store.cleanup_stale_files(max_age_hours=max_age_hours)

    scheduler.add_job(
        id="staged_image_cleanup",
        func=scheduled_cleanup,
        trigger="cron",
        hour=app.config["CLEANUP_CRON_HOUR"],
        minute=0,
    )
    scheduler.start()
    app.extensions["readings"]["scheduler"] = scheduler


if __name__ == "__main__":
    app = create_app()
    try:
        app.run(host=config.API_HOST, port=config.API_PORT, debug=config.DEBUG)
    finally:
        scheduler = app.extensions["readings"].get("scheduler")
        if scheduler is not None:
            scheduler.shutdown()
        app.extensions["readings"]["engine"].dispose()
