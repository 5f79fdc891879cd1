"""Unit tests for in-memory stores and frame sources."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from attendface.exceptions import InitializationFailure
from attendface.interfaces import (
    AttendanceEvent,
    AttendanceStore,
    FrameSource,
    IdentityProfile,
    IdentityStore,
    RecognitionAuditLog,
    TemplateStore,
)
from attendface.stores import (
    MemoryAttendanceStore,
    MemoryIdentityStore,
    MemoryRecognitionLog,
    MemoryTemplateStore,
)
from attendface.video_io import ImageFileSource, WebcamSource

from conftest import FIXED_NOW, make_template, unit


def event(identity: str, offset_hours: float = 0.0) -> AttendanceEvent:
    return AttendanceEvent(
        identity=identity,
        timestamp=FIXED_NOW + timedelta(hours=offset_hours),
        confidence=0.9,
        device_descriptor="lobby-1",
    )


def test_stores_satisfy_protocols():
    assert isinstance(MemoryTemplateStore(), TemplateStore)
    assert isinstance(MemoryAttendanceStore(), AttendanceStore)
    assert isinstance(MemoryRecognitionLog(), RecognitionAuditLog)
    assert isinstance(MemoryIdentityStore(), IdentityStore)


def test_template_upsert_replaces():
    store = MemoryTemplateStore()
    store.upsert("alice", make_template("alice", unit(0)))
    store.upsert("alice", make_template("alice", unit(1)))

    assert len(store) == 1
    np.testing.assert_array_equal(store.get_all()["alice"].embedding, unit(1))


def test_get_all_is_a_snapshot():
    store = MemoryTemplateStore()
    store.upsert("alice", make_template("alice", unit(0)))

    gallery = store.get_all()
    store.upsert("bob", make_template("bob", unit(1)))

    assert list(gallery) == ["alice"]


def test_template_delete():
    store = MemoryTemplateStore()
    store.upsert("alice", make_template("alice", unit(0)))

    assert store.delete("alice")
    assert not store.delete("alice")
    assert "alice" not in store


def test_find_by_identity_on_day_is_half_open():
    store = MemoryAttendanceStore()
    store.insert(event("alice"))
    start = FIXED_NOW - timedelta(hours=1)

    assert store.find_by_identity_on_day("alice", start, FIXED_NOW + timedelta(hours=1))
    assert store.find_by_identity_on_day("alice", FIXED_NOW, FIXED_NOW + timedelta(hours=1))
    assert store.find_by_identity_on_day("alice", start, FIXED_NOW) is None
    assert store.find_by_identity_on_day("bob", start, FIXED_NOW + timedelta(hours=1)) is None


def test_find_returns_latest_event():
    store = MemoryAttendanceStore()
    store.insert(event("alice", 0))
    store.insert(event("alice", 2))

    found = store.find_by_identity_on_day(
        "alice", FIXED_NOW - timedelta(hours=1), FIXED_NOW + timedelta(hours=5)
    )

    assert found.timestamp == FIXED_NOW + timedelta(hours=2)
    assert len(store.events("alice")) == 2


def test_identity_store():
    store = MemoryIdentityStore([IdentityProfile("alice", "Alice Smith", "alice@example.com")])
    store.add(IdentityProfile("bob", "Bob Jones"))

    assert store.get("alice").email == "alice@example.com"
    assert store.get("bob").full_name == "Bob Jones"
    assert store.get("carol") is None


@patch("attendface.video_io.cv2.VideoCapture")
def test_webcam_read_returns_sample(mock_capture):
    cap = MagicMock()
    cap.isOpened.return_value = True
    cap.get.return_value = 640
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    cap.read.return_value = (True, frame)
    mock_capture.return_value = cap

    source = WebcamSource(camera_id=0)
    ready, sample = source.read()

    assert isinstance(source, FrameSource)
    assert ready
    assert sample.image is frame
    assert sample.timestamp.tzinfo is not None


@patch("attendface.video_io.cv2.VideoCapture")
def test_webcam_not_ready(mock_capture):
    cap = MagicMock()
    cap.isOpened.return_value = True
    cap.get.return_value = 0
    cap.read.return_value = (False, None)
    mock_capture.return_value = cap

    assert WebcamSource().read() == (False, None)


@patch("attendface.video_io.cv2.VideoCapture")
def test_webcam_open_failure(mock_capture):
    cap = MagicMock()
    cap.isOpened.return_value = False
    mock_capture.return_value = cap

    with pytest.raises(InitializationFailure, match="camera_id=3"):
        WebcamSource(camera_id=3)


def test_image_file_source_serves_copies(tmp_path):
    """Every read returns a fresh copy of the still image."""
    path = tmp_path / "face.png"
    image = np.full((48, 64, 3), 120, dtype=np.uint8)
    cv2.imwrite(str(path), image)

    source = ImageFileSource(path)
    ready, first = source.read()
    _, second = source.read()

    assert isinstance(source, FrameSource)
    assert ready
    np.testing.assert_array_equal(first.image, image)
    assert first.image is not second.image
    assert first.timestamp.tzinfo is not None


def test_image_file_source_missing(tmp_path):
    with pytest.raises(InitializationFailure, match="not found"):
        ImageFileSource(tmp_path / "missing.png")


def test_image_file_source_unreadable(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")

    with pytest.raises(InitializationFailure, match="Failed to read"):
        ImageFileSource(path)
