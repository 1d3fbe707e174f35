"""HTTP API routes for introfinder."""

import json
import logging
import queue
import threading
import uuid

from flask import Blueprint, Response, current_app, jsonify, request

from introfinder.engine import process
from introfinder.manifest import manifest_from_dict
from introfinder.models import AnalysisMode, Segment

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


@bp.route("/api/analyze", methods=["POST"])
def start_analysis():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON manifest"}), 400

    try:
        manifest = manifest_from_dict(data)
    except (TypeError, ValueError) as e:
        return jsonify({"error": f"Invalid manifest: {e}"}), 400
    # Results live in the application's store, not in a file chosen by the client.
    manifest.output = None

    job_id = uuid.uuid4().hex[:12]
    progress_queue: queue.Queue = queue.Queue()
    cancel_event = threading.Event()
    store = current_app.config["STORE"]

    job = {
        "status": "processing",
        "progress_queue": progress_queue,
        "cancel_event": cancel_event,
        "result": None,
        "error": None,
    }
    _jobs[job_id] = job

    def run():
        try:
            def on_progress(stage: str, frac: float):
                progress_queue.put({"stage": stage, "progress": round(frac, 3)})

            result = process(
                manifest, on_progress=on_progress, cancel_event=cancel_event, store=store
            )
            job["result"] = {
                "episodes_queued": result.episodes_queued,
                "seasons_analyzed": result.seasons_analyzed,
                "warnings": result.warnings,
                **result.store.to_dict(),
            }
            job["status"] = "cancelled" if result.cancelled else "done"
        except Exception as e:
            logger.exception("Analysis job %s failed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"job_id": job_id, "status": "started"})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_job(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "processing":
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    job["cancel_event"].set()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job.get("progress_queue")

    if q is None:
        return jsonify({"error": "No analysis in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "status": job["status"],
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def job_result(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] not in ("done", "cancelled"):
        return jsonify({"error": "Job not complete"}), 409

    return jsonify(job["result"])


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"]}
    if job["status"] in ("done", "cancelled"):
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)


@bp.route("/api/episodes/<episode_id>/segments")
def episode_segments(episode_id: str):
    segments = current_app.config["STORE"].skippable(episode_id)
    if not segments:
        return jsonify({"error": "No segments found"}), 404
    return jsonify({mode.value: s.to_dict() for mode, s in segments.items()})


@bp.route("/api/episodes/<episode_id>/timestamps", methods=["POST"])
def update_timestamps(episode_id: str):
    """Manually set or replace the segments of one episode."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({"error": "Expected a JSON object keyed by mode"}), 400

    updates: dict[AnalysisMode, Segment] = {}
    for key, value in data.items():
        try:
            mode = AnalysisMode(key)
            start = float(value["start"])
            end = float(value["end"])
        except (KeyError, TypeError, ValueError):
            return jsonify({"error": f"Invalid timestamps for {key!r}"}), 400
        if start < 0 or end <= start:
            return jsonify({"error": f"Invalid range for {key!r}: {start} - {end}"}), 400
        updates[mode] = Segment(episode_id, start=start, end=end)

    store = current_app.config["STORE"]
    for mode, segment in updates.items():
        store.update(mode, {episode_id: segment})

    return jsonify({mode.value: s.to_dict() for mode, s in store.skippable(episode_id).items()})
