"""
routes/media.py — Serves files stored by LocalMediaUploader.

GET /media/<filename> → the file, or 404. No auth: avatar and cover URLs are
public by design of the channel page.
"""

from __future__ import annotations

from flask import Blueprint, current_app, send_from_directory

media_bp = Blueprint("media", __name__)


@media_bp.route("/<path:filename>", methods=["GET"])
def serve_media(filename: str):
    # send_from_directory rejects paths that escape MEDIA_ROOT.
    return send_from_directory(current_app.config["MEDIA_ROOT"], filename)
