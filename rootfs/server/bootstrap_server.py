import base64
import hmac
import logging
import os
import sys
import threading

from flask import Flask, Response, render_template, request

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from wgboot_core.config import Settings

import keepalive
import peer_config

_log = logging.getLogger("wgboot.bootstrap")

ROOT_MESSAGE = "This app only serves /bootstrap (one-time WireGuard config + QR)."


def _text(body, code=200):
    return Response(body, status=code, mimetype="text/plain")


def _error(msg, code):
    return _text(msg + "\n", code)


def _token_ok(given, expected):
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def create_app(settings=None):
    settings = settings or Settings.from_env()

    app = Flask(
        __name__,
        template_folder=os.path.join(os.path.dirname(__file__), "templates"),
    )
    app.config["WGBOOT_SETTINGS"] = settings

    @app.route("/")
    def index():
        return _text(ROOT_MESSAGE)

    @app.route("/healthz")
    def healthz():
        if peer_config.config_exists(settings.peer_config_path):
            return _text("ok")
        return _error("config not ready", 503)

    @app.route("/bootstrap")
    def bootstrap():
        if peer_config.marker_exists(settings.done_path):
            return _error("bootstrap already completed", 410)

        if settings.token:
            token = request.args.get("token", "")
            if not token:
                return _error("missing token", 401)
            if not _token_ok(token, settings.token):
                _log.warning("bootstrap rejected: invalid token from %s", request.remote_addr)
                return _error("invalid token", 403)

        try:
            conf = peer_config.load_peer_config(settings.peer_config_path)
        except peer_config.ConfigNotReady as e:
            _log.warning("read conf: %s", e)
            return _error("config not ready", 503)

        conf = peer_config.rewrite_endpoint(conf, settings.endpoint_host, settings.endpoint_port)

        try:
            qr_png = peer_config.encode_qr(conf)
        except Exception:
            _log.exception("qr encode failed")
            return _error("failed to generate qr", 500)

        try:
            page = render_template(
                "bootstrap.html",
                config=conf,
                qr_base64=base64.b64encode(qr_png).decode("ascii"),
            )
        except Exception:
            _log.exception("page render failed")
            return _error("failed to render page", 500)

        try:
            peer_config.claim_marker(settings.done_path)
        except peer_config.AlreadyCompleted:
            _log.warning("bootstrap raced with another request; not serving config twice")
            return _error("bootstrap already completed", 410)
        except OSError as e:
            _log.error("write done: %s", e)
            return _error("failed to finalize bootstrap", 500)

        _log.info("bootstrap completed for peer %s", settings.peer_name)
        resp = Response(page, mimetype="text/html")
        resp.headers["Cache-Control"] = "no-store"
        return resp

    return app


def _watch_peer_config(settings):
    if peer_config.wait_for_file(settings.peer_config_path, settings.config_wait):
        _log.info("peer config ready at %s", settings.peer_config_path)


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s", force=True)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    settings = Settings.from_env()
    app = create_app(settings)

    threading.Thread(target=_watch_peer_config, args=(settings,), daemon=True).start()
    keepalive.start_from_settings(settings)

    _log.info("bootstrap-http listening on 0.0.0.0:%s", settings.port)
    app.run(host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
