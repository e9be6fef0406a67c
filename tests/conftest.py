import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="weighment-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["MEDIA_DIR"] = os.path.join(_TMP, "media")
os.environ["BASE_URL"] = "http://testserver"
os.environ.pop("CAMERA_SOURCE", None)

import pytest
from PIL import Image

from camera import FrameSource
from database import Base, engine, SessionLocal
from media import LocalObjectStore, ObjectStore, SnapshotUploader


class FakeCamera(FrameSource):
    """Solid-colour frames; ``size`` can be forced to (0, 0) like a camera still warming up."""

    def __init__(self, size=(320, 240), color=(255, 255, 255), report_size=True, started=True):
        self._frame = Image.new("RGB", size, color)
        self._report_size = report_size
        self._started = started
        self.reads = 0

    def start(self):
        self._started = True

    @property
    def started(self):
        return self._started

    @property
    def size(self):
        return self._frame.size if self._report_size else (0, 0)

    def read_frame(self):
        self.reads += 1
        return self._frame.copy() if self._started else None

    def release(self):
        self._started = False


class FailingStore(ObjectStore):
    def put(self, key, data, content_type):
        raise OSError("bucket unreachable")

    def public_url(self, key):
        raise AssertionError("not reached")


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(str(tmp_path / "media"), "http://testserver")


@pytest.fixture
def uploader(store):
    return SnapshotUploader(store, category="snapshots")


@pytest.fixture
def failing_uploader():
    return SnapshotUploader(FailingStore(), category="snapshots")


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from app import app

    with TestClient(app) as c:
        yield c
