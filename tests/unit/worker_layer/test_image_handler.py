"""
Unit Tests for ImageJobHandler

Images are generated with Pillow into pytest's tmp_path.
"""

from pathlib import Path

import pytest
from PIL import Image

from bookhive.core.exceptions import JobHandlerError
from bookhive.workers.handlers import ImageJobHandler


@pytest.fixture
def cover(tmp_path) -> Path:
    path = tmp_path / "cover.png"
    Image.new("RGB", (1600, 900), color=(200, 120, 40)).save(path)
    return path


@pytest.mark.unit
class TestOptimizeImage:
    @pytest.mark.asyncio
    async def test_resizes_within_bounds(self, cover, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        result = await handler.optimize_image({"image_path": str(cover), "options": {"width": 800}})

        assert result["success"] is True
        assert result["optimized_path"].endswith("cover_optimized.jpeg")
        with Image.open(result["optimized_path"]) as optimized:
            assert optimized.size == (800, 450)
            assert optimized.format == "JPEG"

    @pytest.mark.asyncio
    async def test_never_enlarges(self, cover, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        result = await handler.optimize_image({"image_path": str(cover), "options": {"width": 4000, "format": "png"}})

        with Image.open(result["optimized_path"]) as optimized:
            assert optimized.size == (1600, 900)

    @pytest.mark.asyncio
    async def test_missing_file_is_a_handler_error(self, tmp_path, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        with pytest.raises(JobHandlerError):
            await handler.optimize_image({"image_path": str(tmp_path / "missing.jpg")})

    @pytest.mark.asyncio
    async def test_unsupported_format(self, cover, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        with pytest.raises(JobHandlerError):
            await handler.optimize_image({"image_path": str(cover), "options": {"format": "bmp"}})


@pytest.mark.unit
class TestThumbnails:
    @pytest.mark.asyncio
    async def test_square_thumbnails_per_size(self, cover, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        result = await handler.generate_thumbnails({"image_path": str(cover), "sizes": [150, 300]})

        assert result["original_dimensions"] == "1600x900"
        assert [t["size"] for t in result["thumbnails"]] == [150, 300]
        for thumb in result["thumbnails"]:
            with Image.open(thumb["path"]) as image:
                assert image.size == (thumb["size"], thumb["size"])


@pytest.mark.unit
class TestUploadAndBatch:
    @pytest.mark.asyncio
    async def test_upload_publishes_and_removes_local_files(self, cover, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        result = await handler.upload_optimized_image({"image_path": str(cover), "folder": "covers"})

        assert result["url"] == "https://cdn.test/books/cover.jpg"
        assert result["public_id"] == "books/cover"
        uploaded_path, folder, public_id = mock_image_uploader.upload.await_args.args
        assert folder == "covers"
        assert public_id is None
        assert not cover.exists()
        assert not Path(uploaded_path).exists()

    @pytest.mark.asyncio
    async def test_upload_failure_is_a_handler_error(self, cover, mock_image_uploader):
        mock_image_uploader.upload.side_effect = RuntimeError("quota exceeded")
        handler = ImageJobHandler(mock_image_uploader)

        with pytest.raises(JobHandlerError, match="upload"):
            await handler.upload_optimized_image({"image_path": str(cover)})

    @pytest.mark.asyncio
    async def test_batch_reports_per_image_outcome(self, cover, tmp_path, mock_image_uploader):
        handler = ImageJobHandler(mock_image_uploader)

        result = await handler.batch_process_images({
            "image_paths": [str(cover), str(tmp_path / "missing.jpg")],
            "options": {"width": 300},
        })

        assert result["processed"] == 2
        assert result["successful"] == 1
        assert result["failed"] == 1
        assert result["results"][1]["success"] is False
