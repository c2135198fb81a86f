"""Flask HTTP adapter for `LabBrewService`."""

import io
import json
import logging
from typing import Optional

from flask import Flask, jsonify, request, send_file

from .config import PipelineConfig
from .errors import (
    ConversionNotCompleted, DecodeError, JobNotFound, LabBrewError,
    ProcessingError, SettingsError, UploadError,
)
from .service import LabBrewService

logger = logging.getLogger("labpbr_pipeline.web")


def _uploaded_file():
    """Return (filename, bytes) of the multipart ``file`` field, or (None, None)."""
    f = request.files.get("file")
    if f is None or not f.filename:
        return None, None
    return f.filename, f.read()


def _parse_settings(raw: Optional[str]):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise SettingsError(f"settings is not valid JSON: {e.msg}") from e


def create_app(service: Optional[LabBrewService] = None,
               config: Optional[PipelineConfig] = None) -> Flask:
    """Flask application factory."""
    service = service or LabBrewService(config)
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = service.config.max_upload_bytes
    app.extensions["labbrew"] = service

    @app.errorhandler(JobNotFound)
    def job_not_found(error):
        return jsonify({"message": str(error)}), 404

    @app.errorhandler(SettingsError)
    def invalid_settings(error):
        return jsonify({"message": "Invalid settings", "errors": error.problems}), 400

    @app.errorhandler(UploadError)
    @app.errorhandler(ConversionNotCompleted)
    @app.errorhandler(DecodeError)
    @app.errorhandler(ProcessingError)
    def bad_request(error):
        return jsonify({"message": str(error)}), 400

    @app.errorhandler(LabBrewError)
    def service_error(error):
        logger.error("Request failed: %s", error)
        return jsonify({"message": str(error)}), 500

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({
            "message": "File too large",
            "maxSize": service.config.max_upload_bytes,
        }), 413

    @app.route("/api/upload", methods=["POST"])
    def upload():
        filename, data = _uploaded_file()
        settings = _parse_settings(request.form.get("settings"))
        job_id = service.submit(filename, data, settings)
        return jsonify({"jobId": job_id})

    @app.route("/api/jobs", methods=["GET"])
    def list_jobs():
        return jsonify([job.to_dict() for job in service.list_jobs()])

    @app.route("/api/jobs/<job_id>", methods=["GET"])
    def get_job(job_id):
        return jsonify(service.get_job(job_id).to_dict())

    @app.route("/api/jobs/<job_id>/status", methods=["GET"])
    def get_status(job_id):
        return jsonify(service.get_status(job_id).to_dict())

    @app.route("/api/jobs/<job_id>/files", methods=["GET"])
    def list_files(job_id):
        return jsonify([record.to_dict() for record in service.list_files(job_id)])

    @app.route("/api/jobs/<job_id>/download", methods=["GET"])
    def download(job_id):
        filename, data = service.download(job_id)
        return send_file(
            io.BytesIO(data),
            mimetype="application/zip",
            as_attachment=True,
            download_name=filename,
        )

    @app.route("/api/jobs/<job_id>/cancel", methods=["POST"])
    def cancel(job_id):
        return jsonify({"cancelled": service.cancel(job_id)})

    @app.route("/api/validate", methods=["POST"])
    def validate():
        filename, data = _uploaded_file()
        return jsonify(service.validate_upload(filename, data))

    @app.route("/api/analyze", methods=["POST"])
    def analyze():
        _, data = _uploaded_file()
        return jsonify(service.analyze(data).to_dict())

    return app
