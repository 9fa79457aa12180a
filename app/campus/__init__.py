import logging
from datetime import timedelta

from flask import Flask, request, session
from dotenv import load_dotenv

from app.campus.config import load_config
from app.campus.db import init_db, teardown_db_session
from app.campus.errors import register_error_handlers
from app.campus.routes import bp as routes_bp
from app.campus.auth import bp as auth_bp, load_current_user
from app.campus.modules.documents.admin import bp as documents_bp
from app.campus.modules.document_types.admin import bp as document_types_bp
from app.campus.modules.publications.admin import bp as publications_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            try:
                from app.campus.storage import S3Storage, storage_from_config

                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(documents_bp, url_prefix="/api/documents")
    app.register_blueprint(document_types_bp, url_prefix="/api/document-types")
    app.register_blueprint(publications_bp, url_prefix="/api/publications")

    register_error_handlers(app)

    @app.before_request
    def _load_user():
        if not request.path.startswith(("/health", "/healthz")):
            session.permanent = True
        return load_current_user()

    app.teardown_appcontext(teardown_db_session)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
