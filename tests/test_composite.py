"""Tests for the image composite job."""

import os

import pytest

from showcase import metrics
from showcase.pipeline.composite import ImageCompositeJob, build_composite_prompt
from showcase.pipeline.errors import BadRequest, PaymentRequired, UpstreamError, InternalError, StorageError
from showcase.pipeline.models import ImageCompositeRequest, SourceImage

from conftest import FakeGemini, make_image


@pytest.fixture
def gemini():
    return FakeGemini()


@pytest.fixture
def job(ledger, projects, storage, gemini):
    return ImageCompositeJob(ledger, projects, storage, gemini, model="test-image-model")


def _request(**overrides):
    fields = dict(product_name="Sneaker", user_prompt="on a rooftop")
    fields.update(overrides)
    return ImageCompositeRequest(**fields)


class TestValidation:

    @pytest.mark.asyncio
    async def test_one_image_rejected_and_deleted(self, db, job, upload_files):
        """Validation failures still delete the spooled uploads."""
        db.add_user("u1", 50)

        with pytest.raises(BadRequest) as exc:
            await job.run("u1", _request(), upload_files[:1])

        assert exc.value.message == "Please provide at least 2 images and product name"
        assert not os.path.exists(upload_files[0].path)
        assert db.credits("u1") == 50

    @pytest.mark.asyncio
    async def test_missing_product_name_rejected(self, db, job, upload_files):
        db.add_user("u1", 50)
        with pytest.raises(BadRequest):
            await job.run("u1", _request(product_name=None), upload_files)
        assert db.credits("u1") == 50

    @pytest.mark.asyncio
    async def test_low_balance_no_reservation_no_project(self, db, job, upload_files):
        db.add_user("u1", 4)

        with pytest.raises(PaymentRequired) as exc:
            await job.run("u1", _request(), upload_files)

        assert exc.value.message == "Not enough credits. Please purchase more credits."
        assert db.credits("u1") == 4
        assert db.rows("projects") == []
        assert all(not os.path.exists(f.path) for f in upload_files)
        [error] = metrics.get_snapshot()["recent_errors"]
        assert error["job"] == "image"
        assert error["error_type"] == "PaymentRequired"

    @pytest.mark.asyncio
    async def test_missing_user_is_payment_required(self, db, job, upload_files):
        with pytest.raises(PaymentRequired):
            await job.run("ghost", _request(), upload_files)


class TestSuccess:

    @pytest.mark.asyncio
    async def test_sneaker_scenario(self, db, job, storage, gemini, upload_files):
        """Balance 5, one WebP input: project ready, balance 0, no files left."""
        db.add_user("u1", 5)

        project_id = await job.run("u1", _request(), upload_files)

        row = db.project(project_id)
        assert db.credits("u1") == 0
        assert row["generated_image"].startswith("https://cdn.example.com/images/")
        assert row["is_generating"] is False
        assert row["error"] is None
        assert row["uploaded_images"] == [
            "https://cdn.example.com/images/1.png",
            "https://cdn.example.com/images/2.png",
        ]
        assert storage.uploaded_files == [f.path for f in upload_files]
        assert storage.uploaded_bytes == [b"\x89PNG composite"]
        for f in upload_files:
            assert not os.path.exists(f.path)
        assert not any(name.endswith("-converted.png") for name in os.listdir(os.path.dirname(upload_files[0].path)))

    @pytest.mark.asyncio
    async def test_model_request_shape(self, db, job, gemini, upload_files):
        db.add_user("u1", 10)

        await job.run("u1", _request(aspect_ratio="1:1"), upload_files)

        call = gemini.calls[0]
        assert call["model"] == "test-image-model"
        assert call["aspect_ratio"] == "1:1"
        assert [mime for _, mime in call["images"]] == ["image/jpeg", "image/png"]
        assert call["prompt"].endswith("on a rooftop")

    @pytest.mark.asyncio
    async def test_default_aspect_ratio(self, db, job, gemini, upload_files):
        db.add_user("u1", 10)
        await job.run("u1", _request(), upload_files)
        assert gemini.calls[0]["aspect_ratio"] == "9:16"

    @pytest.mark.asyncio
    async def test_job_metrics_recorded(self, db, job, upload_files):
        db.add_user("u1", 10)
        await job.run("u1", _request(), upload_files)
        assert metrics.get_snapshot()["counters"]["jobs.image.succeeded"] == 1


class TestFailure:

    @pytest.mark.asyncio
    async def test_model_failure_refunds_and_annotates(self, db, ledger, projects, storage, upload_files):
        """Balance is preserved and the project carries the error."""
        db.add_user("u1", 12)
        job = ImageCompositeJob(ledger, projects, storage, FakeGemini(error=UpstreamError("Failed to generate image")))

        with pytest.raises(UpstreamError):
            await job.run("u1", _request(), upload_files)

        assert db.credits("u1") == 12
        [row] = db.rows("projects")
        assert row["is_generating"] is False
        assert row["error"] == "Failed to generate image"
        assert all(not os.path.exists(f.path) for f in upload_files)
        # The WebP person photo was converted; that PNG is gone too
        upload_dir = os.path.dirname(upload_files[0].path)
        assert os.listdir(upload_dir) == []
        assert metrics.get_snapshot()["recent_errors"][-1]["job"] == "image"

    @pytest.mark.asyncio
    async def test_normalize_failure_waits_for_sibling_conversion(self, db, job, temp_dir):
        """A slow conversion still in flight when the other one fails leaves no file behind."""
        db.add_user("u1", 5)
        broken = temp_dir / "product.webp"
        broken.write_bytes(b"not an image")
        large = make_image(temp_dir / "person.bmp", "BMP", size=(2500, 2500))
        files = [
            SourceImage(path=str(broken), mime_type="image/webp", filename="product.webp"),
            SourceImage(path=str(large), mime_type="image/bmp", filename="person.bmp"),
        ]

        with pytest.raises(StorageError):
            await job.run("u1", _request(), files)

        assert os.listdir(temp_dir) == []
        assert db.credits("u1") == 5

    @pytest.mark.asyncio
    async def test_upload_failure_before_project_refunds(self, db, job, storage, upload_files):
        db.add_user("u1", 5)
        storage.fail_uploads = True

        with pytest.raises(Exception):
            await job.run("u1", _request(), upload_files)

        assert db.credits("u1") == 5
        assert db.rows("projects") == []

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, db, ledger, projects, storage, upload_files):
        db.add_user("u1", 5)
        job = ImageCompositeJob(ledger, projects, storage, FakeGemini(error=KeyError("parts")))

        with pytest.raises(InternalError) as exc:
            await job.run("u1", _request(), upload_files)

        assert isinstance(exc.value.__cause__, KeyError)
        assert db.credits("u1") == 5


def test_composite_prompt_without_user_prompt():
    prompt = build_composite_prompt(None)
    assert "naturally hold or use the product" in prompt
    assert "None" not in prompt
