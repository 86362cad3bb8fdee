"""
Pytest Configuration and Fixtures

In-memory stand-ins for Supabase, object storage and the model clients, plus
wired-up ledger / store / job fixtures shared by all tests.
"""

import copy
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest
from PIL import Image

from showcase import metrics
from showcase.pipeline.credits import CreditLedger
from showcase.pipeline.errors import UpstreamError
from showcase.pipeline.models import SourceImage
from showcase.pipeline.project_service import ProjectStore


# ═════════════════════════════════════════════════════════════════════════════
# Supabase fake
# ═════════════════════════════════════════════════════════════════════════════

class FakeQuery:
    """Just enough of the PostgREST query builder for the ledger and store."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._filters: list = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None

    def select(self, columns: str = "*"):
        self._op = "select"
        return self

    def insert(self, row):
        self._op, self._payload = "insert", row
        return self

    def update(self, fields: dict):
        self._op, self._payload = "update", fields
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column: str, value):
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def is_(self, column: str, value):
        expected = None if value == "null" else value
        self._filters.append(lambda r: r.get(column) is expected)
        return self

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _matches(self) -> list[dict]:
        return [r for r in self._db.rows(self._table) if all(f(r) for f in self._filters)]

    def execute(self):
        self._db.calls.append((self._table, self._op, self._payload))
        rows = self._db.rows(self._table)

        if self._op == "insert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            rows.extend(copy.deepcopy(new_rows))
            return SimpleNamespace(data=copy.deepcopy(new_rows))

        if self._op == "update":
            if self._table in self._db.lost_updates and self._db.lost_updates[self._table] > 0:
                self._db.lost_updates[self._table] -= 1
                return SimpleNamespace(data=[])
            matched = self._matches()
            for r in matched:
                r.update(copy.deepcopy(self._payload))
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self._op == "delete":
            matched = self._matches()
            self._db.tables[self._table] = [r for r in rows if r not in matched]
            return SimpleNamespace(data=copy.deepcopy(matched))

        matched = self._matches()
        if self._order:
            column, desc = self._order
            matched.sort(key=lambda r: r.get(column) or "", reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return SimpleNamespace(data=copy.deepcopy(matched))


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {"users": [], "projects": []}
        self.calls: list = []
        # table → number of upcoming updates that match nothing (simulated contention)
        self.lost_updates: dict[str, int] = {}
        self.auth = MagicMock()

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    # ── helpers ──

    def add_user(self, user_id: str, credits: int) -> dict:
        row = {"id": user_id, "email": None, "name": None, "image": None, "credits": credits}
        self.rows("users").append(row)
        return row

    def credits(self, user_id: str) -> Optional[int]:
        for r in self.rows("users"):
            if r["id"] == user_id:
                return r["credits"]
        return None

    def project(self, project_id: str) -> Optional[dict]:
        for r in self.rows("projects"):
            if r["id"] == project_id:
                return r
        return None


# ═════════════════════════════════════════════════════════════════════════════
# Storage and model fakes
# ═════════════════════════════════════════════════════════════════════════════

class FakeStorage:
    def __init__(self):
        self.uploaded_files: list[str] = []
        self.uploaded_bytes: list[bytes] = []
        self.fail_uploads = False
        self.download_payload = b"\x89PNG generated"
        self._n = 0

    def _url(self, kind) -> str:
        self._n += 1
        return f"https://cdn.example.com/{kind.value}s/{self._n}.png"

    async def upload_file(self, path, kind, user_id, content_type=None) -> str:
        if self.fail_uploads:
            from showcase.pipeline.errors import StorageError
            raise StorageError("Upload to object storage failed: boom")
        # The file must still exist when it is uploaded
        assert Path(path).exists()
        self.uploaded_files.append(path)
        return self._url(kind)

    async def upload_bytes(self, data, content_type, kind, user_id) -> str:
        self.uploaded_bytes.append(data)
        return self._url(kind)

    async def download_bytes(self, url: str) -> bytes:
        return self.download_payload


class FakeGemini:
    def __init__(self, result=(b"\x89PNG composite", "image/png"), error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: list[dict] = []

    async def generate_image(self, model, images, prompt, aspect_ratio, image_size="1K"):
        self.calls.append({
            "model": model,
            "images": images,
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
        })
        if self.error:
            raise self.error
        return self.result


class FakeVeo:
    """Returns `polls` not-done operations, then `final`."""

    def __init__(self, final: Optional[dict] = None, polls: int = 0, video: bytes = b"mp4-bytes"):
        self.final = final if final is not None else {
            "name": "operations/op-1",
            "done": True,
            "response": {"generateVideoResponse": {
                "generatedSamples": [{"video": {"uri": "https://veo.example.com/v.mp4"}}],
            }},
        }
        self.polls = polls
        self.video = video
        self.submitted: list[dict] = []
        self.poll_count = 0
        self.downloaded_to: list[str] = []

    async def generate_videos(self, model, prompt, image_bytes, image_mime_type, aspect_ratio, duration_seconds):
        self.submitted.append({
            "model": model,
            "prompt": prompt,
            "image_bytes": image_bytes,
            "aspect_ratio": aspect_ratio,
            "duration_seconds": duration_seconds,
        })
        if self.polls == 0:
            return self.final
        return {"name": "operations/op-1", "done": False}

    async def get_operation(self, operation):
        self.poll_count += 1
        if self.poll_count >= self.polls:
            return self.final
        return {"name": operation["name"], "done": False}

    async def download(self, uri, path):
        if not uri:
            raise UpstreamError("no uri")
        Path(path).write_bytes(self.video)
        self.downloaded_to.append(path)
        return path


# ═════════════════════════════════════════════════════════════════════════════
# Fixtures
# ═════════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def ledger(db) -> CreditLedger:
    return CreditLedger(db)


@pytest.fixture
def projects(db) -> ProjectStore:
    return ProjectStore(db)


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


def make_image(path: Path, fmt: str, mode: str = "RGB", size: tuple = (8, 8)) -> Path:
    Image.new(mode, size).save(path, format=fmt)
    return path


@pytest.fixture
def upload_files(temp_dir):
    """Two spooled uploads: a JPEG product photo and a WebP person photo."""
    product = make_image(temp_dir / "product.jpg", "JPEG")
    person = make_image(temp_dir / "person.webp", "WEBP")
    return [
        SourceImage(path=str(product), mime_type="image/jpeg", filename="product.jpg"),
        SourceImage(path=str(person), mime_type="image/webp", filename="person.webp"),
    ]
