"""
Fetch cover images and normalize them to a square JPEG.

Every processed image has the same shape: a centered square crop of the
source, resized to canonical_size and re-encoded as baseline JPEG.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Any

import httpx
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_CANONICAL_SIZE = 600
IMAGE_USER_AGENT = "Mozilla/5.0"


class FetchError(Exception):
    """Image could not be downloaded or decoded."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch image {url}: {reason}")
        self.url = url
        self.reason = reason


def center_square_box(width: int, height: int) -> tuple[int, int, int, int]:
    """Crop box for the largest centered square."""
    side = min(width, height)
    left = (width - side) // 2
    top = (height - side) // 2
    return (left, top, left + side, top + side)


class ImageProcessor:
    """Downloads images and converts them to canonical_size square JPEGs."""

    def __init__(
        self,
        canonical_size: int = DEFAULT_CANONICAL_SIZE,
        timeout: httpx.Timeout | float = 5.0,
        user_agent: str = IMAGE_USER_AGENT,
    ):
        self.canonical_size = canonical_size
        self.timeout = timeout
        self.user_agent = user_agent
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialized HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    def fetch(self, url: str) -> bytes:
        """
        Download an image and return its processed JPEG bytes.

        Raises:
            FetchError: On network failure, timeout, non-2xx status, empty body
                or undecodable image data
        """
        data = self.download(url)
        try:
            return self.process(data)
        except FetchError as e:
            raise FetchError(url, e.reason) from e

    def download(self, url: str) -> bytes:
        """Raw image bytes, without processing."""
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchError(url, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        if not response.content:
            raise FetchError(url, "empty response body")
        logger.debug(f"Downloaded {len(response.content)} bytes from {url}")
        return response.content

    def process(self, data: bytes) -> bytes:
        """
        Center-crop to a square, resize to canonical_size and encode as JPEG.

        Smaller sources are upscaled.

        Raises:
            FetchError: If the data cannot be decoded as an image
        """
        try:
            with Image.open(BytesIO(data)) as img:
                img.load()
                square = img.crop(center_square_box(img.width, img.height))
        except (OSError, EOFError, ValueError, Image.DecompressionBombError) as e:
            raise FetchError("<bytes>", f"undecodable image: {e}") from e

        if square.mode != "RGB":
            square = square.convert("RGB")

        size = (self.canonical_size, self.canonical_size)
        resized = square.resize(size, Image.Resampling.LANCZOS)

        canvas = Image.new("RGB", size)
        canvas.paste(resized, (0, 0))

        output = BytesIO()
        canvas.save(output, format="JPEG")
        return output.getvalue()

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> ImageProcessor:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


## Tests


def _png(width: int, height: int, mode: str = "RGB") -> bytes:
    output = BytesIO()
    Image.new(mode, (width, height)).save(output, format="PNG")
    return output.getvalue()


def test_center_square_box():
    assert center_square_box(1200, 800) == (200, 0, 1000, 800)
    assert center_square_box(300, 500) == (0, 100, 300, 400)
    assert center_square_box(64, 64) == (0, 0, 64, 64)


def test_process_landscape_to_square():
    result = ImageProcessor().process(_png(1200, 800))
    with Image.open(BytesIO(result)) as img:
        assert img.format == "JPEG"
        assert img.size == (600, 600)
        assert img.mode == "RGB"


def test_process_upscales_small_images():
    result = ImageProcessor(canonical_size=300).process(_png(100, 40))
    with Image.open(BytesIO(result)) as img:
        assert img.size == (300, 300)


def test_process_converts_transparent_images():
    result = ImageProcessor().process(_png(50, 50, mode="RGBA"))
    with Image.open(BytesIO(result)) as img:
        assert img.mode == "RGB"


def test_process_rejects_garbage():
    import pytest

    with pytest.raises(FetchError, match="undecodable image"):
        ImageProcessor().process(b"definitely not an image")
