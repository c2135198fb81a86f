"""Tests for the job event fold and the in-memory repository."""

import threading
import unittest

from LabBrew.config import ConversionSettings
from LabBrew.core.events import (
    Completed, Failed, FileProgressed, LogAppended, TaskStarted, apply_event,
)
from LabBrew.core.records import ConversionJob, JobStatus, ProcessingStatus, TextureFileRecord
from LabBrew.core.store import InMemoryJobRepository
from LabBrew.errors import InvalidTransition, JobNotFound


def _fresh():
    return ConversionJob(id="j1", filename="pack.zip"), ProcessingStatus()


class TestApplyEvent(unittest.TestCase):
    def test_task_started_moves_pending_to_processing(self):
        job, status = _fresh()
        new_job, new_status = apply_event(
            job, status, TaskStarted("Extracting...", step=1, progress=5, total_images=3),
        )
        self.assertEqual(new_job.status, JobStatus.PROCESSING)
        self.assertEqual(new_job.progress, 5)
        self.assertEqual(new_status.current_task, "Extracting...")
        self.assertEqual(new_status.current_step, 1)
        self.assertEqual(new_status.total_images, 3)
        # inputs are untouched
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(status.current_task, "Initializing...")

    def test_task_without_progress_keeps_previous_values(self):
        job, status = apply_event(*_fresh(), TaskStarted("a", step=2, progress=40))
        job, status = apply_event(job, status, TaskStarted("b"))
        self.assertEqual((status.current_task, status.current_step, status.progress), ("b", 2, 40))

    def test_file_progress_clamps(self):
        job, status = apply_event(*_fresh(), TaskStarted("start"))
        job, status = apply_event(job, status, FileProgressed(2, 10, progress=250))
        self.assertEqual(job.progress, 100)
        self.assertEqual(status.progress, 100)
        self.assertEqual(status.images_processed, 2)
        self.assertEqual(status.textures_generated, 10)
        job, status = apply_event(job, status, FileProgressed(2, 10, progress=-3))
        self.assertEqual(status.progress, 0)

    def test_file_progress_requires_processing(self):
        with self.assertRaises(InvalidTransition):
            apply_event(*_fresh(), FileProgressed(1, 1, 50))

    def test_warning_logs_are_collected_on_job(self):
        job, status = _fresh()
        job, status = apply_event(job, status, LogAppended("info", "hello"))
        job, status = apply_event(job, status, LogAppended("warning", "careful"))
        self.assertEqual(job.warnings, ("careful",))
        self.assertEqual([entry.level for entry in status.logs], ["info", "warning"])

    def test_unknown_log_level(self):
        with self.assertRaises(ValueError):
            apply_event(*_fresh(), LogAppended("debug", "x"))

    def test_completed(self):
        job, status = apply_event(*_fresh(), TaskStarted("start"))
        job, status = apply_event(job, status, Completed(timestamp="2024-01-01T00:00:00.000Z"))
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual(job.progress, 100)
        self.assertEqual(job.completed_at, "2024-01-01T00:00:00.000Z")
        self.assertEqual(status.current_task, "Complete!")
        self.assertEqual(status.current_step, status.total_steps)
        self.assertEqual(status.logs[-1].level, "success")

    def test_failed(self):
        job, status = apply_event(*_fresh(), TaskStarted("start"))
        job, status = apply_event(job, status, Failed("bad pixel"))
        self.assertEqual(job.status, JobStatus.FAILED)
        self.assertEqual(job.errors, ("bad pixel",))
        self.assertIsNone(job.completed_at)
        self.assertEqual(status.current_task, "Failed")
        self.assertEqual(status.logs[-1].message, "Processing failed: bad pixel")
        self.assertEqual(status.logs[-1].level, "error")

    def test_terminal_states_are_final(self):
        job, status = apply_event(*_fresh(), TaskStarted("start"))
        done = apply_event(job, status, Completed())
        for event in (TaskStarted("again"), Failed("late"), Completed(), LogAppended("info", "x")):
            with self.assertRaises(InvalidTransition):
                apply_event(*done, event)

    def test_completed_from_pending_is_rejected(self):
        with self.assertRaises(InvalidTransition):
            apply_event(*_fresh(), Completed())
        with self.assertRaises(InvalidTransition):
            apply_event(*_fresh(), Failed("x"))

    def test_elapsed_time(self):
        _, status = apply_event(*_fresh(), TaskStarted("start"), elapsed_ms=1234)
        self.assertEqual(status.elapsed_time, 1234)

    def test_unsupported_event(self):
        with self.assertRaises(TypeError):
            apply_event(*_fresh(), object())


class TestInMemoryJobRepository(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryJobRepository()

    def test_create_and_get(self):
        job = self.repo.create_job("stone.png", ConversionSettings(), total_steps=4)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual(self.repo.get_job(job.id), job)
        self.assertEqual(self.repo.get_status(job.id).total_steps, 4)
        self.assertEqual(self.repo.list_jobs(), [job])
        self.assertIsNone(self.repo.get_output(job.id))

    def test_unknown_job(self):
        with self.assertRaises(JobNotFound) as ctx:
            self.repo.get_job("missing")
        self.assertEqual(str(ctx.exception), "Job not found: missing")
        self.assertIsInstance(ctx.exception, KeyError)
        for call in (self.repo.get_status, self.repo.list_files, self.repo.get_output):
            with self.assertRaises(JobNotFound):
                call("missing")

    def test_apply_persists_snapshots(self):
        job = self.repo.create_job("pack.zip", ConversionSettings())
        before = self.repo.get_job(job.id)
        self.repo.apply(job.id, TaskStarted("start", progress=10))
        self.assertEqual(before.status, JobStatus.PENDING)
        self.assertEqual(self.repo.get_job(job.id).status, JobStatus.PROCESSING)
        self.assertEqual(self.repo.get_status(job.id).progress, 10)

    def test_files_and_output(self):
        job = self.repo.create_job("pack.zip", ConversionSettings())
        for path in ("a.png", "b.png"):
            self.repo.add_file(TextureFileRecord(
                id=f"{job.id}:{path}", job_id=job.id, original_path=path,
                texture_type="base", validation_status="valid",
            ))
        self.assertEqual([r.original_path for r in self.repo.list_files(job.id)], ["a.png", "b.png"])
        self.repo.store_output(job.id, "pack_labpbr.zip", b"zip")
        self.assertEqual(self.repo.get_output(job.id), ("pack_labpbr.zip", b"zip"))

    def test_concurrent_logs_are_all_kept(self):
        job = self.repo.create_job("pack.zip", ConversionSettings())
        self.repo.apply(job.id, TaskStarted("start"))

        def writer(n):
            for i in range(50):
                self.repo.apply(job.id, LogAppended("info", f"{n}-{i}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(self.repo.get_status(job.id).logs), 200)


if __name__ == "__main__":
    unittest.main(verbosity=2)
