# app.py
import os
from functools import wraps
from typing import Optional
from urllib.parse import unquote

from flask import Flask, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from discovery import DiscoveryService
from errors import InvalidOperation, LanShareError
from logging_setup import get_logger, setup_logging
from scanner import get_local_ip
from settings import Settings, load_settings

log = get_logger("app")


# -----------------------
# Helpers
# -----------------------
def _fail(message: str, status: int):
    return jsonify({"success": False, "error": message}), status


def json_errors(fn):
    """
    Map LanShareError to its status code and anything unexpected to 500,
    both in the {"success": false, "error": ...} envelope.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except LanShareError as e:
            return _fail(e.message, e.status_code)
        except HTTPException:
            raise
        except Exception as e:
            log.exception("%s failed", request.path)
            return _fail(f"{type(e).__name__}: {e}", 500)
    return wrapper


def _service() -> DiscoveryService:
    return current_app.extensions["lanshare"]


def _download(path: str):
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


# -----------------------
# App factory
# -----------------------
def create_app(settings: Optional[Settings] = None, service: Optional[DiscoveryService] = None) -> Flask:
    settings = settings or load_settings()
    service = service or DiscoveryService(settings)
    service.ensure_share_root()

    app = Flask(__name__, static_folder=None)
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_bytes
    app.config["LANSHARE_SETTINGS"] = settings
    app.extensions["lanshare"] = service

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        if e.code == 413:
            return _fail(f"Upload exceeds {settings.max_upload_mb} MB", 413)
        return _fail(e.description or e.name, e.code or 500)

    # -----------------------
    # Network discovery
    # -----------------------
    @app.route("/api/network/computers", methods=["GET"])
    @json_errors
    def api_network_computers():
        segment = request.args.get("segment")
        computers = _service().discover_hosts(segment)
        return jsonify({"success": True, "computers": [c.to_dict() for c in computers]})

    @app.route("/api/network/segment", methods=["GET"])
    @json_errors
    def api_network_segment():
        return jsonify({"success": True, "segment": _service().guess_segment()})

    @app.route("/api/network/shares", methods=["GET"])
    @json_errors
    def api_network_shares():
        shares = _service().list_shares(request.args.get("computer"))
        return jsonify({"success": True, "shares": [s.to_dict() for s in shares]})

    @app.route("/api/network/files", methods=["GET"])
    @json_errors
    def api_network_files():
        files = _service().list_files(request.args.get("share"), request.args.get("path", ""))
        return jsonify({"success": True, "files": [f.to_dict() for f in files]})

    @app.route("/api/network/download", methods=["GET"])
    @json_errors
    def api_network_download():
        path = _service().fetch_file(request.args.get("share"), request.args.get("path", ""))
        return _download(path)

    # -----------------------
    # Local share
    # -----------------------
    @app.route("/api/files", methods=["GET"])
    @json_errors
    def api_files():
        files = _service().list_local_files(request.args.get("path", ""))
        return jsonify({"success": True, "files": [f.to_dict() for f in files]})

    @app.route("/api/files/<path:subpath>", methods=["GET"])
    @json_errors
    def api_files_path(subpath: str):
        service = _service()
        try:
            path = service.fetch_local_file(subpath)
        except InvalidOperation:
            # a directory: list it instead of downloading
            files = service.list_local_files(subpath)
            return jsonify({"success": True, "files": [f.to_dict() for f in files]})
        return _download(path)

    @app.route("/api/upload", methods=["POST"])
    @json_errors
    def api_upload():
        # browsers percent-encode non-ASCII names in headers
        filename = unquote(request.headers.get("X-File-Name", ""))
        data = request.get_data(cache=False)
        _service().save_upload(request.args.get("path", ""), filename, data)
        return jsonify({"success": True, "message": "File uploaded successfully"})

    return app


# -----------------------
# Main
# -----------------------
def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_file)
    app = create_app(settings)

    local_ip = get_local_ip()
    log.info("LAN share viewer started")
    log.info("Local:           http://localhost:%d", settings.port)
    log.info("LAN:             http://%s:%d", local_ip, settings.port)
    log.info("Share directory: %s", settings.share_root)
    app.run(host=settings.host, port=settings.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
