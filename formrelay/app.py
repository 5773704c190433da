"""
------------------ FormRelay ------------------
- Flask app proxying Google Forms API calls
  for a single authorized Google account.
- /export-form dumps a form as JSON, /import-form
  rebuilds page breaks and radio questions from
  the same kind of JSON in a new form.
- Configurable using config.yaml and environment
  variables (see formrelay/config.py).
-----------------------------------------------
"""

import atexit
import logging
from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from formrelay.auth import OAuthClient
from formrelay.config import APP_NAME, APP_VERSION, load_config
from formrelay.credentials import PostgresCredentialStore, make_store
from formrelay.forms import build_service
from formrelay.routes.auth import auth_bp
from formrelay.routes.forms import forms_bp

logger = logging.getLogger(__name__)

# ---------------------------- APP

def create_app(config=None, *, store=None, oauth=None, forms_service=None):
    """Build the Flask app.

    ``store``, ``oauth`` and ``forms_service`` (a callable taking the current
    Credential and returning a Forms API resource) default to the real
    implementations built from ``config``.
    """
    if config is None:
        config = load_config()
    if store is None:
        store = make_store(config)
        if isinstance(store, PostgresCredentialStore):
            from formrelay.db import close_db_pool
            atexit.register(close_db_pool)
    if oauth is None:
        oauth = OAuthClient.from_config(config)
    if forms_service is None:
        def forms_service(credential):
            return build_service(oauth.google_credentials(credential))

    app = Flask(APP_NAME)
    CORS(app)
    # keep the form JSON in Google's key order
    app.json.sort_keys = False
    app.extensions["formrelay"] = {
        "config": config,
        "store": store,
        "oauth": oauth,
        "forms_service": forms_service,
    }
    app.register_blueprint(auth_bp)
    app.register_blueprint(forms_bp)

    @app.route('/favicon.ico')
    def favicon():
        return '', 204

    @app.route('/')
    def banner():
        return f"<h1>🚀 {APP_NAME} {APP_VERSION} is Running ...</h1>"

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled exception in request")
        return jsonify({"ok": False, "error": "Internal server error"}), 500

    return app
