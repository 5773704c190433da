import logging
from flask import Blueprint, current_app, g, jsonify, request

from formrelay.auth import login_required
from formrelay.errors import RemoteServiceError, ValidationError
from formrelay.forms import export_form, import_form, parse_descriptor

logger = logging.getLogger(__name__)

PLAIN = {"Content-Type": "text/plain; charset=utf-8"}

forms_bp = Blueprint("forms", __name__)


def _service():
    return current_app.extensions["formrelay"]["forms_service"](g.credential)


@forms_bp.route("/export-form/<formId>", methods=["GET"])
@login_required
def exportForm(formId):
    save_dir = current_app.extensions["formrelay"]["config"]["export"].get("save_dir")
    try:
        form = export_form(_service(), formId, save_dir=save_dir)
    except RemoteServiceError:
        logger.exception("Error exporting form %s", formId)
        return "Error exporting form", 500, PLAIN
    logger.info("Exported form %s", formId)
    return jsonify(form), 200


@forms_bp.route("/import-form", methods=["POST"])
@login_required
def importForm():
    """
    { "info": {"title": "Quiz"}, "items": [{"title": "Part 2", "pageBreakItem": {}}] }
      -> https://docs.google.com/forms/d/<formId>/viewform
    """
    try:
        descriptor = parse_descriptor(request.get_json(silent=True))
    except ValidationError as e:
        logger.warning("Rejected import body: %s", e)
        return "Invalid form JSON structure.", 400, PLAIN

    try:
        result = import_form(_service(), descriptor)
    except RemoteServiceError:
        logger.exception("Error creating form")
        return "Error creating form", 500, PLAIN
    return result.link, 200, PLAIN
