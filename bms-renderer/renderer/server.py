"""
Render service: exposes the render pipeline over HTTP.
PUT /renders/<operation_id> with {"url": ...} returns the diagnostics of the run.
Only malformed input is rejected; render failures travel inside the diagnostics.
"""

import json
import queue
import re
import threading

from flask import Flask, Response, request, stream_with_context

from renderer.core import setup_logger
from renderer.errors import describe_error
from renderer.models import Diagnostics

logger = setup_logger("bms.server")

URL_PATTERN = re.compile(r"^(https?|ftp)://\S+$", re.IGNORECASE)
OPERATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def is_valid_url(url) -> bool:
    return isinstance(url, str) and bool(URL_PATTERN.match(url))


def upload_key(operation_id: str) -> str:
    return f"{operation_id}.mp3"


def run_render(pipeline, object_store, diagnostics: Diagnostics, url: str) -> Diagnostics:
    """Render, then upload the produced file. Never raises; failures land in diagnostics.error."""
    context = {'context': diagnostics.operation_id}
    try:
        pipeline.render(url, diagnostics=diagnostics)
        logger.info(f"Render result: {json.dumps(diagnostics.to_dict())}", extra=context)
        if diagnostics.out_file:
            logger.info("Uploading file", extra=context)
            object_store.upload(diagnostics.out_file, upload_key(diagnostics.operation_id))
            logger.info("Uploading finish", extra=context)
            diagnostics.record("uploaded")
    except Exception as e:
        logger.error(f"Render request failed: {e}", extra=context, exc_info=True)
        diagnostics.out_file = None
        diagnostics.error = describe_error(e)
    finally:
        diagnostics.finish()
    return diagnostics


def _stream_render(pipeline, object_store, diagnostics: Diagnostics, url: str):
    """NDJSON body: one line per event while rendering; the last line is the full diagnostics."""
    events = queue.Queue()
    diagnostics.on_event = events.put

    def work():
        try:
            run_render(pipeline, object_store, diagnostics, url)
        finally:
            events.put(None)

    threading.Thread(target=work, name=f"render-{diagnostics.operation_id}", daemon=True).start()

    def generate():
        while True:
            event = events.get()
            if event is None:
                break
            yield json.dumps(event.to_dict()) + "\n"
        yield json.dumps(diagnostics.to_dict()) + "\n"

    return Response(stream_with_context(generate()), mimetype="application/x-ndjson")


def create_app(pipeline, object_store) -> Flask:
    app = Flask(__name__)

    @app.route('/renders/<operation_id>', methods=['PUT'])
    def put_render(operation_id):
        """Render the package at body.url and return the diagnostics"""
        if not OPERATION_ID_PATTERN.match(operation_id):
            return "Operation ID must be alphanumeric", 400
        body = request.get_json(silent=True) or {}
        url = body.get("url") if isinstance(body, dict) else None
        if not is_valid_url(url):
            return "URL must be valid", 400

        logger.info(f"Handling request for {url}", extra={'context': operation_id})
        diagnostics = Diagnostics(operation_id=operation_id)

        if request.args.get("stream") in ("1", "true"):
            return _stream_render(pipeline, object_store, diagnostics, url)

        run_render(pipeline, object_store, diagnostics, url)
        # Single line so clients reading the last line get the whole document
        return Response(json.dumps(diagnostics.to_dict()), mimetype="application/json")

    @app.errorhandler(404)
    def not_found(error):
        return "Not found", 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return "Method not allowed", 405

    return app
