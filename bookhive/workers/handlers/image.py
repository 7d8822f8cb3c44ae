"""
Image Job Handler

Pillow-based optimisation and thumbnailing for the ``image-processing``
queue. Pillow is CPU bound and blocking, so every transform runs in a
worker thread via asyncio.to_thread.
"""

import asyncio
import io
import os
from pathlib import Path
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError

from bookhive.core.exceptions import JobHandlerError
from bookhive.core.interfaces import ImageUploader
from bookhive.core.logging.logger import get_logger

logger = get_logger(__name__)

# Output format -> Pillow format name
PIL_FORMATS = {"jpeg": "JPEG", "jpg": "JPEG", "png": "PNG", "webp": "WEBP"}

DEFAULT_QUALITY = 80
DEFAULT_THUMBNAIL_SIZES = (150, 300, 600)
THUMBNAIL_QUALITY = 85
UPLOAD_QUALITY = 85
UPLOAD_MAX_WIDTH = 1200

# Bound used for the missing side when only width or height is given
_UNBOUNDED = 100_000


def _encode(image: Image.Image, fmt: str, quality: int) -> bytes:
    pil_format = PIL_FORMATS[fmt]
    if pil_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")

    buffer = io.BytesIO()
    params: dict[str, Any] = {"optimize": True}
    if pil_format in ("JPEG", "WEBP"):
        params["quality"] = quality
    image.save(buffer, format=pil_format, **params)
    return buffer.getvalue()


def optimize_file(
    image_path: str,
    quality: int = DEFAULT_QUALITY,
    width: int | None = None,
    height: int | None = None,
    fmt: str = "jpeg",
) -> dict[str, Any]:
    """Resize to fit inside (width, height) without enlarging and re-encode."""
    fmt = fmt.lower()
    if fmt not in PIL_FORMATS:
        raise ValueError(f"Unsupported image format: {fmt}")

    source = Path(image_path)
    with Image.open(source) as opened:
        image = ImageOps.exif_transpose(opened)
        if width or height:
            image.thumbnail((width or _UNBOUNDED, height or _UNBOUNDED), Image.Resampling.LANCZOS)
        payload = _encode(image, fmt, quality)

    optimized = source.with_name(f"{source.stem}_optimized.{fmt}")
    optimized.write_bytes(payload)

    original_size = source.stat().st_size
    return {
        "success": True,
        "original_path": str(source),
        "optimized_path": str(optimized),
        "original_size": original_size,
        "optimized_size": len(payload),
        "compression_ratio": (original_size - len(payload)) / original_size if original_size else 0.0,
    }


def thumbnail_files(image_path: str, sizes: list[int]) -> dict[str, Any]:
    """Square, centre-cropped JPEG thumbnails, one per size."""
    source = Path(image_path)
    thumbnails = []
    with Image.open(source) as opened:
        image = ImageOps.exif_transpose(opened).convert("RGB")
        original = f"{image.width}x{image.height}"
        for size in sizes:
            thumb = ImageOps.fit(image, (size, size), Image.Resampling.LANCZOS, centering=(0.5, 0.5))
            payload = _encode(thumb, "jpeg", THUMBNAIL_QUALITY)
            target = source.with_name(f"{source.stem}_thumb_{size}.jpg")
            target.write_bytes(payload)
            thumbnails.append({
                "size": size,
                "path": str(target),
                "dimensions": f"{size}x{size}",
                "file_size": len(payload),
            })

    return {"success": True, "original_path": str(source), "original_dimensions": original, "thumbnails": thumbnails}


class ImageJobHandler:
    """Handlers for the ``image-processing`` queue."""

    def __init__(self, uploader: ImageUploader):
        self._uploader = uploader

    async def optimize_image(self, data: dict[str, Any]) -> dict[str, Any]:
        image_path = data.get("image_path")
        options = data.get("options") or {}
        try:
            return await asyncio.to_thread(
                optimize_file,
                image_path,
                options.get("quality", DEFAULT_QUALITY),
                options.get("width"),
                options.get("height"),
                options.get("format", "jpeg"),
            )
        except (OSError, ValueError, UnidentifiedImageError) as e:
            logger.error("Image optimization failed", image_path=image_path, error=str(e))
            raise JobHandlerError(f"Failed to optimize image: {e}", details={"image_path": image_path}) from e

    async def generate_thumbnails(self, data: dict[str, Any]) -> dict[str, Any]:
        image_path = data.get("image_path")
        sizes = list(data.get("sizes") or DEFAULT_THUMBNAIL_SIZES)
        try:
            return await asyncio.to_thread(thumbnail_files, image_path, sizes)
        except (OSError, ValueError, UnidentifiedImageError) as e:
            logger.error("Thumbnail generation failed", image_path=image_path, error=str(e))
            raise JobHandlerError(f"Failed to generate thumbnails: {e}", details={"image_path": image_path}) from e

    async def upload_optimized_image(self, data: dict[str, Any]) -> dict[str, Any]:
        """Optimise for web, publish through the uploader, then remove local copies."""
        image_path = data.get("image_path")
        optimized = await self.optimize_image({
            "image_path": image_path,
            "options": {"quality": UPLOAD_QUALITY, "width": UPLOAD_MAX_WIDTH, "format": "jpeg"},
        })

        try:
            uploaded = await self._uploader.upload(
                optimized["optimized_path"], data.get("folder") or "books", data.get("public_id")
            )
        except Exception as e:
            raise JobHandlerError(f"Failed to upload optimized image: {e}", details={"image_path": image_path}) from e

        for path in (image_path, optimized["optimized_path"]):
            try:
                await asyncio.to_thread(os.remove, path)
            except OSError as e:
                logger.warning("Failed to cleanup local file", path=path, error=str(e))

        return {
            "success": True,
            "url": uploaded["secure_url"],
            "public_id": uploaded["public_id"],
            "original_size": optimized["original_size"],
            "optimized_size": optimized["optimized_size"],
            "compression_ratio": optimized["compression_ratio"],
        }

    async def batch_process_images(self, data: dict[str, Any]) -> dict[str, Any]:
        image_paths = list(data.get("image_paths") or [])
        options = data.get("options") or {}

        results = []
        for image_path in image_paths:
            try:
                result = await self.optimize_image({"image_path": image_path, "options": options})
                results.append({"path": image_path, **result})
            except JobHandlerError as e:
                results.append({"path": image_path, "success": False, "error": e.message})

        successful = sum(1 for r in results if r["success"])
        return {
            "success": True,
            "processed": len(image_paths),
            "successful": successful,
            "failed": len(results) - successful,
            "results": results,
        }
