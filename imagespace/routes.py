import os
import time

from flask import Blueprint, current_app, jsonify, request

from .errors import ImageSpaceError
from .utils.logging import logger

routes_bp = Blueprint("routes_bp", __name__)


def _services():
    return current_app.extensions["imagespace"]


def success_response(data, code=200):
    return jsonify({"status": "success", "data": data, "error": None}), code


def error_response(msg, code=400):
    return jsonify({"status": "error", "data": None, "error": msg}), code


@routes_bp.errorhandler(ImageSpaceError)
def handle_imagespace_error(e):
    if e.status_code >= 500:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
    return error_response(e.message, e.status_code)


def _json_body():
    return request.get_json(silent=True) or {}


# --- workspaces ---

@routes_bp.route("/api/workspace", methods=["GET"])
def list_workspaces():
    return success_response({"workspaces": _services().workspaces.list_workspaces()})


@routes_bp.route("/api/workspace", methods=["POST"])
def create_workspace():
    ws = _services().workspaces.create_workspace(_json_body().get("name", ""))
    return success_response({"workspace": ws}, 201)


@routes_bp.route("/api/workspace", methods=["DELETE"])
def delete_workspace():
    _services().workspaces.delete_workspace(_json_body().get("name", ""))
    return success_response(None)


@routes_bp.route("/api/workspace/current", methods=["GET"])
def get_current_workspace():
    return success_response({"workspace": _services().workspaces.get_current()})


@routes_bp.route("/api/workspace/current", methods=["PUT"])
@routes_bp.route("/api/workspace/switch", methods=["POST"])
def set_current_workspace():
    ws = _services().workspaces.set_current(_json_body().get("name", ""))
    return success_response({"workspace": ws})


# --- images ---

@routes_bp.route("/api/image/list", methods=["GET"])
def list_images():
    workspace = request.args.get("workspace", "")
    if not workspace:
        return error_response("workspace is required")
    return success_response({"images": _services().pipeline.list_workspace_images(workspace)})


@routes_bp.route("/api/image/<int:image_id>", methods=["GET"])
def get_image_detail(image_id):
    return success_response({"image": _services().pipeline.get_image_detail(image_id)})


@routes_bp.route("/api/image/upload", methods=["POST"])
def upload_image():
    workspace = request.form.get("workspace", "")
    if not workspace:
        return error_response("workspace is required")
    if "file" not in request.files:
        return error_response("No file part")
    file = request.files["file"]
    # keep the caller's name but never a client-side directory
    filename = os.path.basename((file.filename or "").replace("\\", "/"))
    if not filename:
        filename = f"{time.time_ns()}.jpg"

    result = _services().pipeline.upload_image(workspace, filename, file.read())
    return success_response(result)


@routes_bp.route("/api/image/generate", methods=["POST"])
def generate_image():
    body = _json_body()
    result = _services().pipeline.generate_image(
        body.get("prompt", ""),
        body.get("images") or [],
        body.get("workspace", ""),
        enable_web_search=bool(body.get("enable_web_search", False)),
    )
    return success_response(result)


@routes_bp.route("/api/image", methods=["DELETE"])
def delete_image():
    path = _json_body().get("path", "")
    if not path:
        return error_response("path is required")
    _services().pipeline.delete_image(path)
    return success_response(None)


@routes_bp.route("/api/image/rename", methods=["POST"])
def rename_image():
    body = _json_body()
    if not body.get("path") or not body.get("workspace"):
        return error_response("path and workspace are required")
    image = _services().pipeline.rename_image(body["path"], body.get("new_name", ""), body["workspace"])
    return success_response({"image": image})


@routes_bp.route("/health", methods=["GET"])
def health_check():
    return success_response({"message": "Image workspace API is running"})
