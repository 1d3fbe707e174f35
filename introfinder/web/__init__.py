"""Flask application factory for the introfinder HTTP API."""

from flask import Flask, jsonify

from introfinder.results import SegmentStore


def create_app(store: SegmentStore | None = None) -> Flask:
    app = Flask(__name__)
    app.config["STORE"] = store if store is not None else SegmentStore()
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024  # 16 MB of manifest JSON

    from introfinder.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "Manifest too large"}), 413

    return app
