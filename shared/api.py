"""
API Server for Soundpost.
Serves articles and categories to the web frontend and the terminal player,
accepts admin uploads, and records play/duration telemetry.
"""

import math
import os
import sqlite3
import logging
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Optional, Tuple

from flask import Flask, request, jsonify, send_from_directory, abort, g
from flask_socketio import SocketIO
from flask_cors import CORS

logger = logging.getLogger(__name__)

from shared.auth import AuthError, TokenManager, extract_bearer
from shared.config import ServerConfig
from shared.constants import DEFAULT_PAGE_SIZE, MAX_AUDIO_UPLOAD_BYTES, SERVICE_NAME, SERVICE_VERSION
from shared.database import DatabaseManager
from shared.models import Category, slugify
from media_tool.audio import UploadValidationError
from media_tool.media_service import MediaService, MediaServiceError
from media_tool.service_factory import MediaServiceFactory
from media_tool.uploader import ArticleUploader, IncomingFile
from player.controller import (
    HeaderCapabilityProvider,
    QualityTier,
    detect_device_profile,
    select_transform,
)

app = Flask(__name__)
# Room for a 50MB audio file plus the thumbnail and form fields
app.config['MAX_CONTENT_LENGTH'] = MAX_AUDIO_UPLOAD_BYTES + 10 * 1024 * 1024
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*")

# Frontend page -> file in the frontend directory
PAGES = {
    '/': 'index.html',
    '/categories': 'index.html',
    '/article': 'article.html',
    '/login': 'login.html',
    '/admin': 'admin.html',
    '/upload': 'upload.html',
    '/manage-categories': 'manage-categories.html',
}

# Global instances
server_config: Optional[ServerConfig] = None
database_manager: Optional[DatabaseManager] = None
media_service: Optional[MediaService] = None
token_manager: Optional[TokenManager] = None
article_uploader: Optional[ArticleUploader] = None


def configure(config: ServerConfig, media: Optional[MediaService] = None):
    """Wire the app to a config. `media` overrides the service the config would create."""
    global server_config, database_manager, media_service, token_manager, article_uploader
    server_config = config
    database_manager = DatabaseManager(str(config.resolved_database_path))
    media_service = media or MediaServiceFactory.create(config)
    token_manager = TokenManager(config.secret_key, config.admin_username, config.admin_password,
                                 admin_email=config.admin_email)
    article_uploader = ArticleUploader(database_manager, media_service)
    logger.info(f"API configured: db={config.resolved_database_path}, media={media_service.get_service_name()}")


def get_core() -> Tuple[DatabaseManager, ArticleUploader, TokenManager]:
    if database_manager is None:
        logger.info("API: Initializing core services from environment...")
        configure(ServerConfig.from_env())
    return database_manager, article_uploader, token_manager


def error(message: str, status: int):
    return jsonify({"error": message}), status


def admin_required(view):
    """Reject the request unless it carries a valid admin bearer token."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        _, _, tokens = get_core()
        try:
            g.admin = tokens.verify(extract_bearer(request.headers.get('Authorization')))
        except AuthError as e:
            return error(str(e), 401)
        return view(*args, **kwargs)
    return wrapper


def _incoming(field: str) -> Optional[IncomingFile]:
    storage = request.files.get(field)
    if storage is None or not storage.filename:
        return None
    return IncomingFile(data=storage.read(), filename=storage.filename, mime_type=storage.mimetype)


def _request_fields() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _notify_articles_changed():
    socketio.emit('articles_updated')


@app.errorhandler(413)
def too_large(e):
    return error("File too large", 413)


# --- Health ---

@app.route('/api/test')
def api_test():
    return jsonify({
        "message": f"{SERVICE_NAME} is working!",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": SERVICE_VERSION,
    })


# --- Auth ---

@app.route('/api/auth/login', methods=['POST'])
def login():
    _, _, tokens = get_core()
    data = request.get_json(silent=True) or request.form.to_dict()
    username = data.get('username')
    password = data.get('password')
    if not tokens.validate_credentials(username, password):
        logger.info("API: Rejected admin login")
        return error("Invalid admin credentials", 400)
    logger.info(f"API: Admin login successful for {username}")
    return jsonify({
        "message": "Admin login successful",
        "token": tokens.issue(username),
        "user": tokens.user_info(username),
    })


@app.route('/api/auth/verify', methods=['GET'])
def verify():
    _, _, tokens = get_core()
    try:
        payload = tokens.verify(extract_bearer(request.headers.get('Authorization')))
    except AuthError as e:
        return error(str(e), 401)
    return jsonify({"valid": True, "user": tokens.user_info(payload["username"])})


# --- Articles ---

@app.route('/api/articles', methods=['GET'])
def get_articles():
    db, _, _ = get_core()
    try:
        limit = max(1, int(request.args.get('limit', DEFAULT_PAGE_SIZE)))
        page = max(1, int(request.args.get('page', 1)))
    except ValueError:
        return error("limit and page must be integers", 400)
    featured_arg = request.args.get('featured')
    featured = None if featured_arg is None else featured_arg.lower() == 'true'

    articles, total = db.list_articles(category=request.args.get('category') or None,
                                       featured=featured, limit=limit, page=page)
    return jsonify({
        "articles": [a.to_dict() for a in articles],
        "totalPages": (total + limit - 1) // limit,
        "currentPage": page,
        "total": total,
    })


@app.route('/api/articles/<article_id>', methods=['GET'])
def get_article(article_id):
    db, _, _ = get_core()
    article = db.get_article(article_id)
    if article is None:
        return error("Article not found", 404)
    return jsonify(article.to_dict())


@app.route('/api/articles/<article_id>/stream', methods=['GET'])
def get_stream_url(article_id):
    """The audio URL best suited to the requesting device."""
    db, _, _ = get_core()
    article = db.get_article(article_id)
    if article is None:
        return error("Article not found", 404)

    profile = detect_device_profile(HeaderCapabilityProvider(request.headers))
    tier = profile.quality_tier
    requested = request.args.get('quality')
    if requested:
        try:
            tier = QualityTier(requested)
        except ValueError:
            return error(f"Unknown quality: {requested}", 400)

    return jsonify({
        "url": select_transform(article.audio_url, tier, profile),
        "quality": tier.value,
        "loadStrategy": profile.load_strategy.value,
        "preloadSeconds": profile.preload_buffer_seconds,
    })


@app.route('/api/articles', methods=['POST'])
@admin_required
def create_article():
    _, uploader, _ = get_core()
    try:
        article = uploader.create_article(request.form.to_dict(), _incoming('audio'), _incoming('thumbnail'))
    except UploadValidationError as e:
        return error(str(e), 400)
    except MediaServiceError as e:
        logger.error(f"API: Article upload failed: {e}")
        return error(str(e), 500)
    _notify_articles_changed()
    return jsonify(article.to_dict()), 201


@app.route('/api/articles/<article_id>', methods=['PUT'])
@admin_required
def update_article(article_id):
    _, uploader, _ = get_core()
    try:
        article = uploader.update_article(article_id, _request_fields(), _incoming('thumbnail'))
    except UploadValidationError as e:
        return error(str(e), 400)
    except MediaServiceError as e:
        logger.error(f"API: Thumbnail replacement failed: {e}")
        return error(str(e), 500)
    if article is None:
        return error("Article not found", 404)
    _notify_articles_changed()
    return jsonify(article.to_dict())


@app.route('/api/articles/<article_id>', methods=['DELETE'])
@admin_required
def delete_article(article_id):
    _, uploader, _ = get_core()
    try:
        deleted = uploader.delete_article(article_id)
    except MediaServiceError as e:
        logger.error(f"API: Error deleting article {article_id}: {e}")
        return error(str(e), 500)
    if not deleted:
        return error("Article not found", 404)
    _notify_articles_changed()
    return jsonify({"message": "Article and associated files deleted successfully"})


@app.route('/api/articles/<article_id>/duration', methods=['PUT'])
def update_duration(article_id):
    db, _, _ = get_core()
    data = request.get_json(silent=True) or {}
    duration = data.get('duration')
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or not math.isfinite(duration):
        return error("Duration must be a positive number", 400)
    seconds = round(duration)
    # 0 is the "unknown" placeholder, never store it from telemetry
    if seconds < 1:
        return error("Duration must be a positive number", 400)
    if not db.update_duration(article_id, seconds):
        return error("Article not found", 404)
    logger.info(f"API: Duration of {article_id} set to {seconds}s")
    return jsonify({"message": "Duration updated", "duration": seconds})


@app.route('/api/articles/<article_id>/play', methods=['POST'])
def track_play(article_id):
    db, _, _ = get_core()
    plays = db.increment_plays(article_id)
    if plays is None:
        return error("Article not found", 404)
    return jsonify({"plays": plays})


# --- Categories ---

@app.route('/api/categories', methods=['GET'])
def get_categories():
    db, _, _ = get_core()
    result = []
    for category in db.list_categories():
        data = category.to_dict()
        data["article_count"] = db.count_published(category.name)
        result.append(data)
    return jsonify(result)


@app.route('/api/categories', methods=['POST'])
@admin_required
def create_category():
    db, _, _ = get_core()
    data = _request_fields()
    name = (data.get('name') or '').strip()
    if not name:
        return error("Category name is required", 400)
    try:
        category = db.create_category(Category.create(name, data.get('description')))
    except sqlite3.IntegrityError:
        return error("Category already exists", 400)
    return jsonify(category.to_dict()), 201


@app.route('/api/categories/update-counts', methods=['PUT'])
@admin_required
def update_category_counts():
    db, _, _ = get_core()
    counts = db.refresh_category_counts()
    return jsonify({"message": "Category counts updated successfully", "counts": counts})


@app.route('/api/categories/<category_id>', methods=['PUT'])
@admin_required
def update_category(category_id):
    db, _, _ = get_core()
    data = _request_fields()
    name = (data.get('name') or '').strip()
    if not name:
        return error("Category name is required", 400)
    try:
        category = db.update_category(category_id, name, slugify(name), data.get('description'))
    except sqlite3.IntegrityError:
        return error("Category already exists", 400)
    if category is None:
        return error("Category not found", 404)
    return jsonify(category.to_dict())


@app.route('/api/categories/<category_id>', methods=['DELETE'])
@admin_required
def delete_category(category_id):
    db, _, _ = get_core()
    if not db.delete_category(category_id):
        return error("Category not found", 404)
    return jsonify({"message": "Category deleted successfully"})


# --- Uploads ---

@app.route('/api/upload/audio', methods=['POST'])
@admin_required
def upload_audio():
    _, uploader, _ = get_core()
    incoming = _incoming('audio')
    if incoming is None:
        return error("No audio file uploaded", 400)
    try:
        result = uploader.upload_audio(incoming)
    except UploadValidationError as e:
        return error(str(e), 400)
    except MediaServiceError as e:
        return error(str(e), 500)
    return jsonify({
        "message": "Audio uploaded successfully to cloud",
        "fileUrl": result.url,
        "publicId": result.public_id,
        "format": result.format,
        "size": result.bytes,
        "duration": result.duration,
        "originalName": incoming.filename,
    })


@app.route('/api/upload/thumbnail', methods=['POST'])
@admin_required
def upload_thumbnail():
    _, uploader, _ = get_core()
    incoming = _incoming('thumbnail')
    if incoming is None:
        return error("No thumbnail uploaded", 400)
    try:
        result = uploader.upload_thumbnail(incoming)
    except UploadValidationError as e:
        return error(str(e), 400)
    except MediaServiceError as e:
        return error(str(e), 500)
    return jsonify({
        "message": "Thumbnail uploaded successfully to cloud",
        "fileUrl": result.url,
        "publicId": result.public_id,
        "format": result.format,
        "size": result.bytes,
        "width": result.width,
        "height": result.height,
        "originalName": incoming.filename,
    })


@app.route('/api/<path:path>', methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH'])
def api_not_found(path):
    return error("API endpoint not found", 404)


# --- Static files ---

@app.route('/media/<path:path>')
def serve_media(path):
    """Files stored by the local media service."""
    get_core()
    if server_config is None or server_config.media_provider != "local":
        abort(404)
    return send_from_directory(str(server_config.resolved_media_dir), path)


def _serve_page(filename: str):
    get_core()
    if not server_config or not server_config.frontend_dir:
        return jsonify({"status": "online", "service": SERVICE_NAME, "version": SERVICE_VERSION})
    return send_from_directory(os.path.abspath(server_config.frontend_dir), filename)


for _route, _filename in PAGES.items():
    app.add_url_rule(
        _route,
        endpoint=f"page_{_filename.split('.')[0]}_{_route.strip('/') or 'root'}",
        view_func=lambda _filename=_filename: _serve_page(_filename),
    )


def start_api(port: Optional[int] = None, debug: bool = False):
    print(f"--- Soundpost API Boot Sequence ---")
    db, _, _ = get_core()
    port = port or server_config.port
    print(f"Database: {db.db_path}")
    print(f"Media:    {media_service.get_service_name()}")
    if server_config.frontend_dir:
        print(f"Frontend: {Path(server_config.frontend_dir).absolute()}")

    print("\n" + "=" * 40)
    print("       SOUNDPOST ONLINE")
    print("=" * 40)
    print(f"Local:  http://localhost:{port}/")
    print("=" * 40 + "\n")

    socketio.run(app, host='0.0.0.0', port=port, debug=debug, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    start_api()
