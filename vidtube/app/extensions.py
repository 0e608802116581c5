"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from vidtube.app.extensions import db, ma

Non-Flask collaborators (the token codec and the media uploader) are built by
the app factory and kept in app.extensions; the accessors below read them back
for the current app.
"""

from flask import current_app
from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Schema classes in app/schemas/ inherit from marshmallow.Schema directly, NOT
# from ma.Schema: ma.Schema needs an application context, and the unit tests
# in tests/unit/ load schemas without one.
ma = Marshmallow()

TOKEN_CODEC_KEY = "token_codec"
MEDIA_UPLOADER_KEY = "media_uploader"


def get_token_codec():
    return current_app.extensions[TOKEN_CODEC_KEY]


def get_media_uploader():
    return current_app.extensions[MEDIA_UPLOADER_KEY]
