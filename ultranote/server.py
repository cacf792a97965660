"""
HTTP server for the shared document.

Two routes carry the whole sync protocol:

    GET  /api/db   -> the on-disk document, or {} if none exists yet
    POST /api/db   -> merge the posted document into the on-disk one
                      (server orientation), bump the version, persist,
                      and answer {"ok": true, "db": merged}

Clients always send the full document; the server never trusts it blindly
but reconciles it with what is already on disk.
"""

import logging
from typing import Any, Optional, Tuple

from flask import Blueprint, Flask, jsonify, request

from . import __version__
from .config import StoreConfig
from .merge import DeletePolicy, Orientation, merge_documents
from .persistence import JsonFileStore
from .types import DEFAULT_ACTIVITY_LIMIT, ensure_collections

logger = logging.getLogger(__name__)


class PersistError(RuntimeError):
    """The merged document could not be written."""


def merge_and_persist(
    store: JsonFileStore,
    payload: dict,
    *,
    delete_policy: DeletePolicy = DeletePolicy.RECENCY,
    activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> dict:
    """
    Read-merge-write cycle for one incoming document.

    Raises:
        PersistError: if the write failed; the on-disk document is unchanged
    """
    def apply(current: Optional[dict]) -> dict:
        merged = merge_documents(
            current or {}, payload, Orientation.SERVER,
            delete_policy=delete_policy,
            activity_limit=activity_limit,
        )
        merged["version"] = merged.get("version", 1) + 1
        ensure_collections(merged)
        if not store.write_document(merged):
            raise PersistError(f"Failed to write {store.path}")
        return merged

    return store.transaction(apply)


def create_api_blueprint(
    store: JsonFileStore,
    *,
    delete_policy: DeletePolicy = DeletePolicy.RECENCY,
    activity_limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> Blueprint:
    """Create the Flask blueprint for the document API.

    Args:
        store: Gateway to the on-disk document
        delete_policy: How a tombstone competes with a live edit
        activity_limit: Maximum activity log length kept after a merge

    Returns:
        Flask Blueprint with the /api routes
    """
    api = Blueprint("api", __name__, url_prefix="/api")

    @api.route("/db", methods=["GET"])
    def get_db() -> Any:
        document = store.read_document()
        return jsonify(document or {})

    @api.route("/db", methods=["POST"])
    def post_db() -> Tuple[Any, int]:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            logger.warning("POST /api/db rejected: body is not a JSON object")
            return jsonify({"error": "Body must be a JSON object"}), 400
        try:
            merged = merge_and_persist(
                store, payload,
                delete_policy=delete_policy,
                activity_limit=activity_limit,
            )
        except PersistError as e:
            logger.error("Persist failed: %s", e)
            return jsonify({"error": "Failed to persist document"}), 500
        except Exception as e:
            logger.error("Merge failed: %s", e, exc_info=True)
            return jsonify({"error": "Internal server error"}), 500
        logger.info("Persisted document version %d", merged["version"])
        return jsonify({"ok": True, "db": merged}), 200

    @api.route("/health", methods=["GET"])
    def health() -> Any:
        document = store.read_document() or {}
        return jsonify({
            "status": "ok",
            "version": document.get("version", 0),
            "server": __version__,
        })

    return api


def create_app(config: StoreConfig) -> Flask:
    """Build the Flask application for a data directory."""
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.server.max_body_bytes

    store = JsonFileStore(config.data_path)
    app.extensions["ultranote.store"] = store
    app.register_blueprint(create_api_blueprint(
        store,
        delete_policy=config.server.delete_policy,
        activity_limit=config.activity_limit,
    ))

    @app.errorhandler(413)
    def too_large(e) -> Tuple[Any, int]:
        logger.warning("Request body over %d bytes rejected", config.server.max_body_bytes)
        return jsonify({"error": "Request body too large"}), 413

    logger.info("Serving %s", store.path)
    return app
