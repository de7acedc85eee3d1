"""Image acquisition: camera frames and uploaded files become one ImageArtifact.

Both paths yield the same HxWx3 RGB uint8 raster so nothing downstream needs
to know where an image came from.
"""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from fruitlens.errors import CaptureError, DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray


class ImageSourceKind(StrEnum):
    CAMERA = "camera"
    UPLOAD = "upload"


@dataclass(frozen=True, eq=False)
class ImageArtifact:
    """One immutable RGB image ready for classification."""

    pixels: NDArray[np.uint8]
    source: ImageSourceKind

    @classmethod
    def from_array(cls, pixels: NDArray[np.uint8], source: ImageSourceKind) -> ImageArtifact:
        frozen = np.array(pixels, dtype=np.uint8, copy=True)
        frozen.setflags(write=False)
        return cls(pixels=frozen, source=source)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


class FrameSource(Protocol):
    """Protocol for a live video stream."""

    @property
    def is_open(self) -> bool:
        """Whether the stream is active."""
        ...

    def read_frame(self) -> NDArray[np.uint8] | None:
        """Return the current decoded RGB frame, or None if there is none yet."""
        ...

    def close(self) -> None:
        """Release the underlying device."""
        ...


def capture_from_live_video(frame_source: FrameSource, size: tuple[int, int]) -> ImageArtifact:
    """Draw the current frame of an active stream into a fixed-size raster.

    Args:
        frame_source: An open video stream.
        size: Target ``(width, height)`` of the raster.

    Raises:
        CaptureError: If the stream is closed or has no decoded frame yet.
    """
    if not frame_source.is_open:
        raise CaptureError("Camera stream is not active")

    frame = frame_source.read_frame()
    if frame is None or frame.ndim < 2 or frame.shape[0] == 0 or frame.shape[1] == 0:
        raise CaptureError("Camera has no decoded frame yet")

    raster = Image.fromarray(np.ascontiguousarray(frame, dtype=np.uint8)).convert("RGB")
    if raster.size != size:
        raster = raster.resize(size, Image.Resampling.BILINEAR)
    return ImageArtifact.from_array(np.asarray(raster), ImageSourceKind.CAMERA)


def decode_image(data: bytes, max_pixels: int) -> ImageArtifact:
    """Decode raw file bytes into an upload artifact.

    EXIF orientation is applied and the result is converted to RGB.

    Raises:
        DecodeError: If the bytes are empty, not an image, or too large.
    """
    if not data:
        raise DecodeError("Uploaded file is empty")

    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.width * img.height > max_pixels:
                raise DecodeError(f"Image has {img.width * img.height} pixels, limit is {max_pixels}")
            oriented = ImageOps.exif_transpose(img)
            pixels = np.asarray(oriented.convert("RGB"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(f"Not a decodable image: {exc}") from exc

    return ImageArtifact.from_array(pixels, ImageSourceKind.UPLOAD)


async def capture_from_file(data: bytes, max_pixels: int) -> ImageArtifact:
    """Decode uploaded bytes without blocking the event loop."""
    return await asyncio.to_thread(decode_image, data, max_pixels)
