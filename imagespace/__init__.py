from dataclasses import dataclass

from flask import Flask

from .config import load_config
from .models.database import build_engine, build_session_factory, init_db
from .routes import routes_bp
from .services.generation import GeminiImageGenerator
from .services.metadataStore import ImageRepository, WorkspaceRepository
from .services.objectStore import ObjectStore
from .services.pipeline import AssetPipeline
from .services.workspaceService import WorkspaceService
from .utils.logging import logger, setup_logging


@dataclass
class Services:
    pipeline: AssetPipeline
    workspaces: WorkspaceService


def build_services(config, store=None, generator=None, session_factory=None):
    """Wire the stores once; every adapter shares the same handles."""
    if session_factory is None:
        engine = build_engine(config["DATABASE_URL"])
        init_db(engine)
        logger.info("Database tables initialized")
        session_factory = build_session_factory(engine)
    if store is None:
        store = ObjectStore.from_config(config)
    if generator is None:
        generator = GeminiImageGenerator(config["GEMINI_API_KEY"], config["GEMINI_MODEL_NAME"])

    workspaces = WorkspaceService(store, WorkspaceRepository(session_factory))
    pipeline = AssetPipeline(
        store,
        ImageRepository(session_factory),
        workspaces,
        generator,
        default_workspace=config["DEFAULT_WORKSPACE"],
    )
    return Services(pipeline=pipeline, workspaces=workspaces)


def create_app(config=None, store=None, generator=None, session_factory=None):
    app = Flask(__name__)

    # --- Configuration ---
    app.config.update(load_config(config))
    setup_logging(app.config["LOG_LEVEL"], app.config["LOG_DIR"] or None)

    # --- Stores and services ---
    app.extensions["imagespace"] = build_services(
        app.config, store=store, generator=generator, session_factory=session_factory
    )

    # --- Register routes blueprint ---
    app.register_blueprint(routes_bp)

    logger.info("Flask app created successfully")
    return app
