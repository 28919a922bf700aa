from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.compute_gateway import WorkerKind
from app.errors import GatewayFailure, GatewayTimeout, ValidationFailed
from app.models import JobStatus, RecognitionJob
from app.services.recognition import MalformedResult, RecognitionPipeline, normalize_detections


def _detect_tomato(payload):
    return {
        "success": True,
        "message": "ok",
        "detections": [{"label": " tomato ", "confidence": 0.91, "bbox": [1, 2, 30, 40]}],
    }


def _upload(client, auth, data, filename="fridge.png"):
    return client.post(
        "/api/images/upload",
        files={"file": (filename, data, "image/png")},
        headers=auth,
    )


def _job(session_factory, job_id) -> RecognitionJob:
    with session_factory() as db:
        return db.get(RecognitionJob, job_id)


def test_upload_returns_pending_and_completes(client, auth, gateway, storage, png_bytes, session_factory):
    gateway.handlers[WorkerKind.RECOGNITION] = _detect_tomato

    resp = _upload(client, auth, png_bytes)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "PENDING"

    # Background task has run by the time TestClient returns
    resp = client.get(f"/api/images/analysis/{body['id']}", headers=auth)
    assert resp.status_code == 200
    view = resp.json()
    assert view["status"] == "COMPLETED"
    assert view["detections"] == [{"label": "tomato", "confidence": 0.91, "bbox": [1.0, 2.0, 30.0, 40.0]}]
    assert "error_message" not in view

    job = _job(session_factory, body["id"])
    assert job.completed_at is not None
    assert job.error_message is None
    assert job.original_filename == "fridge.png"
    assert storage.exists(job.image_ref)

    kind, sent = gateway.calls[0]
    assert kind == WorkerKind.RECOGNITION
    assert sent == png_bytes


def test_gateway_failure_marks_failed_and_deletes_image(client, auth, gateway, storage, png_bytes, session_factory):
    def fail(payload):
        raise GatewayFailure("detector crashed")

    gateway.handlers[WorkerKind.RECOGNITION] = fail

    job_id = _upload(client, auth, png_bytes).json()["id"]
    resp = client.get(f"/api/images/analysis/{job_id}", headers=auth)

    assert resp.status_code == 200
    view = resp.json()
    assert view["status"] == "FAILED"
    assert view["error_message"] == "detector crashed"
    assert "detections" not in view
    assert not storage.exists(_job(session_factory, job_id).image_ref)


def test_gateway_timeout_marks_failed(client, auth, gateway, storage, png_bytes, session_factory):
    def slow(payload):
        raise GatewayTimeout("recognition worker timed out after 30s")

    gateway.handlers[WorkerKind.RECOGNITION] = slow

    job_id = _upload(client, auth, png_bytes).json()["id"]
    view = client.get(f"/api/images/analysis/{job_id}", headers=auth).json()
    assert view["status"] == "FAILED"
    assert "timed out" in view["error_message"]
    assert not storage.exists(_job(session_factory, job_id).image_ref)

    # polling a terminal job is stable
    again = client.get(f"/api/images/analysis/{job_id}", headers=auth)
    assert again.status_code == 200
    assert again.json() == view


def test_unsuccessful_result_uses_worker_message(client, auth, gateway, png_bytes):
    gateway.handlers[WorkerKind.RECOGNITION] = lambda p: {"success": False, "message": "blurry image"}

    job_id = _upload(client, auth, png_bytes).json()["id"]
    view = client.get(f"/api/images/analysis/{job_id}", headers=auth).json()
    assert view["status"] == "FAILED"
    assert view["error_message"] == "blurry image"


def test_malformed_result_marks_failed(client, auth, gateway, png_bytes):
    gateway.handlers[WorkerKind.RECOGNITION] = lambda p: {
        "success": True,
        "detections": [{"label": "egg", "confidence": "high", "bbox": [0, 0, 1, 1]}],
    }

    job_id = _upload(client, auth, png_bytes).json()["id"]
    view = client.get(f"/api/images/analysis/{job_id}", headers=auth).json()
    assert view["status"] == "FAILED"
    assert view["error_message"]


def test_non_image_upload_rejected(client, auth, db_session):
    resp = _upload(client, auth, b"definitely not an image", filename="notes.txt")
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "validation"
    assert db_session.query(RecognitionJob).count() == 0


def test_empty_upload_rejected(client, auth):
    resp = _upload(client, auth, b"")
    assert resp.status_code == 400


def test_upload_requires_user_header(client, png_bytes):
    resp = client.post("/api/images/upload", files={"file": ("a.png", png_bytes, "image/png")})
    assert resp.status_code == 401


def test_pending_job_returns_202(client, auth, db_session, user):
    job = RecognitionJob(owner_id=user.id, image_ref="uploads/x/1.png", status=JobStatus.PENDING)
    db_session.add(job)
    db_session.commit()

    resp = client.get(f"/api/images/analysis/{job.id}", headers=auth)
    assert resp.status_code == 202
    assert resp.json() == {"id": job.id, "status": "PENDING"}


def test_unknown_job_is_404(client, auth):
    resp = client.get("/api/images/analysis/does-not-exist", headers=auth)
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "not_found"


def test_other_users_job_is_403(client, db_session, user, other_user):
    job = RecognitionJob(owner_id=other_user.id, image_ref="uploads/y/1.png", status=JobStatus.COMPLETED)
    db_session.add(job)
    db_session.commit()

    resp = client.get(f"/api/images/analysis/{job.id}", headers={"X-User-Id": user.id})
    assert resp.status_code == 403


def test_terminal_job_is_never_rewritten(pipeline, db_session, user, session_factory):
    job = RecognitionJob(
        owner_id=user.id,
        image_ref="uploads/z/1.png",
        status=JobStatus.COMPLETED,
        result_payload=[],
        completed_at=datetime.now(timezone.utc),
    )
    db_session.add(job)
    db_session.commit()

    assert pipeline._finish(job.id, JobStatus.FAILED, error_message="late") is False

    stored = _job(session_factory, job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.error_message is None


def test_run_skips_job_that_is_no_longer_pending(pipeline, gateway, db_session, user, session_factory):
    job = RecognitionJob(owner_id=user.id, image_ref="uploads/z/2.png", status=JobStatus.PROCESSING)
    db_session.add(job)
    db_session.commit()

    pipeline.run(job.id, job.image_ref)

    assert gateway.calls == []
    assert _job(session_factory, job.id).status == JobStatus.PROCESSING


def test_missing_image_marks_failed(pipeline, gateway, db_session, user, session_factory):
    job = RecognitionJob(owner_id=user.id, image_ref="uploads/z/gone.png", status=JobStatus.PENDING)
    db_session.add(job)
    db_session.commit()

    pipeline.run(job.id, job.image_ref)

    stored = _job(session_factory, job.id)
    assert stored.status == JobStatus.FAILED
    assert gateway.calls == []


def test_late_failure_keeps_image_of_completed_job(pipeline, storage, db_session, user, png_bytes, session_factory):
    ref = storage.put_bytes(f"uploads/{user.id}/done.png", png_bytes)
    job = RecognitionJob(
        owner_id=user.id,
        image_ref=ref,
        status=JobStatus.COMPLETED,
        result_payload=[],
        completed_at=datetime.now(timezone.utc),
    )
    db_session.add(job)
    db_session.commit()

    pipeline._fail(job.id, ref, "late failure")

    assert storage.exists(ref)
    assert _job(session_factory, job.id).status == JobStatus.COMPLETED


def test_unexpected_error_marks_failed(pipeline, gateway, storage, db_session, user, png_bytes, session_factory):
    def explode(payload):
        raise RuntimeError("bug in handler")

    gateway.handlers[WorkerKind.RECOGNITION] = explode
    ref = storage.put_bytes(f"uploads/{user.id}/boom.png", png_bytes)
    job = RecognitionJob(owner_id=user.id, image_ref=ref, status=JobStatus.PENDING)
    db_session.add(job)
    db_session.commit()

    pipeline.run(job.id, ref)

    stored = _job(session_factory, job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Image analysis failed"
    assert not storage.exists(ref)


def test_recognition_runs_when_processing_mark_fails(gateway, storage, db_session, user, png_bytes, session_factory):
    opened = []

    def flaky_sessions():
        session = session_factory()
        if not opened:
            session.execute = Mock(side_effect=OperationalError("UPDATE recognition_jobs", {}, Exception("db gone")))
        opened.append(session)
        return session

    pipeline = RecognitionPipeline(session_factory=flaky_sessions, gateway=gateway, storage=storage)
    ref = storage.put_bytes(f"uploads/{user.id}/flaky.png", png_bytes)
    job = RecognitionJob(owner_id=user.id, image_ref=ref, status=JobStatus.PENDING)
    db_session.add(job)
    db_session.commit()

    pipeline.run(job.id, ref)

    assert len(gateway.calls) == 1
    stored = _job(session_factory, job.id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.completed_at is not None


def test_submit_rejects_oversized_image(pipeline, db_session, user, monkeypatch):
    from app.settings import settings
    monkeypatch.setattr(settings, "upload_max_bytes", 10)

    with pytest.raises(ValidationFailed):
        pipeline.submit(db_session, user.id, b"x" * 11)


class TestNormalizeDetections:
    def test_empty_list_is_valid(self):
        assert normalize_detections({"success": True, "detections": []}) == []

    def test_missing_list(self):
        with pytest.raises(MalformedResult):
            normalize_detections({"success": True})

    def test_bad_bbox(self):
        with pytest.raises(MalformedResult):
            normalize_detections({
                "success": True,
                "detections": [{"label": "milk", "confidence": 0.5, "bbox": [1, 2, 3]}],
            })

    def test_blank_label(self):
        with pytest.raises(MalformedResult):
            normalize_detections({
                "success": True,
                "detections": [{"label": "  ", "confidence": 0.5, "bbox": [1, 2, 3, 4]}],
            })

    def test_unsuccessful_without_message(self):
        with pytest.raises(MalformedResult, match="Image analysis failed"):
            normalize_detections({"success": False})
