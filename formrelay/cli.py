import sys
import json
import logging
import argparse

from formrelay.auth import OAuthClient, check_credential
from formrelay.config import load_config, setup_logging
from formrelay.credentials import make_store
from formrelay.errors import Unauthenticated
from formrelay.forms import build_service, export_form, import_form, parse_descriptor

logger = logging.getLogger(__name__)


def _authorized(config):
    store = make_store(config)
    oauth = OAuthClient.from_config(config)
    ok, result = check_credential(store, oauth)
    if not ok:
        raise Unauthenticated(f"no usable token ({result}), authorize through /auth first")
    return build_service(oauth.google_credentials(result))


def runServer(config, args):
    from formrelay.app import create_app

    server = config["server"]
    create_app(config).run(host=server["host"], port=server["port"], debug=False)


def authUrl(config, args):
    return {"url": OAuthClient.from_config(config).authorization_url()}


def tokenStatus(config, args):
    credential = make_store(config).get()
    if credential is None:
        return {"stored": False}
    return {
        "stored": True,
        "expiry": credential.expiry.isoformat() if credential.expiry else None,
        "expired": credential.expired(),
        "refreshable": bool(credential.refresh_token),
        "scope": credential.scope,
    }


def clearToken(config, args):
    make_store(config).clear()
    return {"cleared": True}


def exportForm(config, args):
    save_dir = args.out or config["export"].get("save_dir")
    form = export_form(_authorized(config), args.form_id, save_dir=save_dir)
    return form if not save_dir else {"form_id": args.form_id, "saved_to": save_dir}


def importForm(config, args):
    with open(args.file, "r", encoding="utf-8") as f:
        descriptor = parse_descriptor(json.load(f))
    result = import_form(_authorized(config), descriptor)
    return {"form_id": result.form_id, "link": result.link, "page_break_ids": result.page_break_ids}


def main(argv=None):
    parser = argparse.ArgumentParser(prog="formrelay", description="FormRelay Google Forms proxy")
    parser.add_argument("--config", help="path to config.yaml")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run-server", help="Run the Flask server")
    sub.add_parser("auth-url", help="Print the Google authorization URL")
    sub.add_parser("token-status", help="Show the stored token state")
    sub.add_parser("clear-token", help="Forget the stored token")
    p_export = sub.add_parser("export-form", help="Export a form as JSON")
    p_export.add_argument("form_id")
    p_export.add_argument("--out", help="directory to save <title>_<formId>.json into")
    p_import = sub.add_parser("import-form", help="Create a new form from a JSON file")
    p_import.add_argument("file")

    args = parser.parse_args(argv)

    setup_actions = {
        "run-server": runServer,
        "auth-url": authUrl,
        "token-status": tokenStatus,
        "clear-token": clearToken,
        "export-form": exportForm,
        "import-form": importForm,
    }

    try:
        config = load_config(args.config)
        setup_logging(config)
        result = setup_actions[args.cmd](config, args)
    except Exception as e:
        logger.exception("CLI execution failed")
        print(json.dumps({"ok": False, "error": str(e)}))
        return 1
    if result is not None:
        print(json.dumps({"ok": True, "result": result}, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
