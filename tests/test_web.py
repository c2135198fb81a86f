"""Tests for the Flask HTTP adapter."""

import importlib.util
import io
import json
import unittest

import numpy as np

from helpers import gradient_png, png_bytes, read_zip
from LabBrew.config import ConversionSettings, PipelineConfig
from LabBrew.service import LabBrewService
from LabBrew.web import create_app

HAS_CV2 = importlib.util.find_spec("cv2") is not None
HAS_SCIPY = importlib.util.find_spec("scipy") is not None


def _upload(data, filename="stone.png", **form):
    return {"file": (io.BytesIO(data), filename), **form}


class TestWebApp(unittest.TestCase):
    def setUp(self):
        config = PipelineConfig()
        config.max_upload_bytes = 1024 * 1024
        self.service = LabBrewService(config)
        self.app = create_app(self.service)
        self.client = self.app.test_client()

    def tearDown(self):
        self.service.close()

    def test_upload_without_file(self):
        resp = self.client.post("/api/upload", data={}, content_type="multipart/form-data")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"message": "No file uploaded"})

    def test_upload_empty_file(self):
        resp = self.client.post(
            "/api/upload", data=_upload(b""), content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["message"], "Empty file uploaded")

    def test_upload_invalid_settings(self):
        resp = self.client.post(
            "/api/upload",
            data=_upload(b"png", settings=json.dumps({"normalStrength": 9})),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 400)
        body = resp.get_json()
        self.assertEqual(body["message"], "Invalid settings")
        self.assertEqual(len(body["errors"]), 1)
        self.assertEqual(self.service.list_jobs(), [])

    def test_upload_settings_not_json(self):
        resp = self.client.post(
            "/api/upload", data=_upload(b"png", settings="{oops"),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("not valid JSON", resp.get_json()["errors"][0])

    def test_upload_too_large(self):
        resp = self.client.post(
            "/api/upload", data=_upload(b"x" * (2 * 1024 * 1024)),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 413)
        self.assertEqual(resp.get_json()["message"], "File too large")

    def test_unknown_job(self):
        for url in ("/api/jobs/nope", "/api/jobs/nope/status",
                    "/api/jobs/nope/files", "/api/jobs/nope/download"):
            resp = self.client.get(url)
            self.assertEqual(resp.status_code, 404, url)
            self.assertEqual(resp.get_json(), {"message": "Job not found: nope"})
        self.assertEqual(self.client.post("/api/jobs/nope/cancel").status_code, 404)

    def test_download_before_completion(self):
        job = self.service.pipeline.create_job("stone.png", ConversionSettings())
        resp = self.client.get(f"/api/jobs/{job.id}/download")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"message": "Conversion not completed"})

    def test_cancel_pending_job(self):
        job = self.service.pipeline.create_job("stone.png", ConversionSettings())
        resp = self.client.post(f"/api/jobs/{job.id}/cancel")
        self.assertEqual(resp.get_json(), {"cancelled": True})
        listed = self.client.get("/api/jobs").get_json()
        self.assertEqual([j["id"] for j in listed], [job.id])
        self.assertEqual(listed[0]["status"], "pending")

    def test_validate(self):
        spec = png_bytes(np.full((4, 4, 4), (200, 10, 0, 255), dtype=np.uint8))
        resp = self.client.post(
            "/api/validate", data=_upload(spec, "rock_s.png"),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertFalse(body["isValid"])
        self.assertEqual(body["issues"][0]["channel"], "alpha")
        self.assertEqual(body["fileDetails"][0]["kind"], "specular")

    def test_analyze(self):
        spec = png_bytes(np.full((4, 4, 4), (255, 231, 0, 255), dtype=np.uint8))
        resp = self.client.post(
            "/api/analyze", data=_upload(spec, "gold_s.png"),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["topMetalName"], "Gold")

    def test_analyze_bad_image(self):
        resp = self.client.post(
            "/api/analyze", data=_upload(b"not an image", "x_s.png"),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 400)

    @unittest.skipUnless(HAS_CV2 and HAS_SCIPY, "cv2/scipy not installed")
    def test_upload_and_download(self):
        resp = self.client.post(
            "/api/upload",
            data=_upload(gradient_png(8, 8), settings=json.dumps({"generateAO": False})),
            content_type="multipart/form-data",
        )
        self.assertEqual(resp.status_code, 200)
        job_id = resp.get_json()["jobId"]
        self.service.wait(job_id, timeout=60)

        job = self.client.get(f"/api/jobs/{job_id}").get_json()
        self.assertEqual(job["status"], "completed")
        self.assertFalse(job["settings"]["generateAO"])
        status = self.client.get(f"/api/jobs/{job_id}/status").get_json()
        self.assertEqual(status["progress"], 100)
        files = self.client.get(f"/api/jobs/{job_id}/files").get_json()
        self.assertEqual(files[0]["originalPath"], "stone.png")

        resp = self.client.get(f"/api/jobs/{job_id}/download")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.mimetype, "application/zip")
        self.assertIn("stone_labpbr.zip", resp.headers["Content-Disposition"])
        self.assertNotIn("stone_ao.png", read_zip(resp.data))
        self.assertFalse(self.client.post(f"/api/jobs/{job_id}/cancel").get_json()["cancelled"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
