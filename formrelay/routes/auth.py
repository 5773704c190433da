import logging
from flask import Blueprint, current_app, redirect, request

from formrelay.errors import AuthExchangeError

logger = logging.getLogger(__name__)

PLAIN = {"Content-Type": "text/plain; charset=utf-8"}

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/auth", methods=["GET"])
def authorize():
    oauth = current_app.extensions["formrelay"]["oauth"]
    return redirect(oauth.authorization_url())


@auth_bp.route("/oauth2callback", methods=["GET"])
def oauthCallback():
    """
    ?code=4/0Ab... -> stores the token
    """
    state = current_app.extensions["formrelay"]
    if request.args.get("error"):
        logger.error("Authorization denied by Google: %s", request.args["error"])
        return "Authentication failed.", 500, PLAIN

    try:
        credential = state["oauth"].exchange_code(request.args.get("code"))
    except AuthExchangeError:
        logger.exception("Error retrieving access token")
        return "Authentication failed.", 500, PLAIN

    state["store"].set(credential)
    logger.info("Authorization complete, token valid until %s", credential.expiry)
    return "Authorization complete! You can now create forms.", 200, PLAIN
