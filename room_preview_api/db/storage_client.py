"""
Cloud Storage asset store for room photos, product references and results.

Objects are content-addressed: the public id is derived from a hash of the
bytes, so uploading the same image twice yields the same object. Derived
renditions (thumbnails, product cutouts) are rendered with Pillow and
stored next to their source under a name that encodes the transformation.
"""

import asyncio
import hashlib
import io
import logging
import mimetypes
from typing import Optional

import httpx
from google.cloud import storage
from PIL import Image, ImageOps

from room_preview_api.config import Config
from room_preview_api.errors import UpstreamUnavailable
from room_preview_api.models import StoredAsset, Thumbnails

logger = logging.getLogger(__name__)

THUMBNAIL_SIZES = {
    "low": (400, 400, 70),
    "medium": (1080, 1080, 80),
}
CUTOUT_SIZE = (1024, 1024, 90)


def content_id(data: bytes) -> str:
    """Short, stable identifier for a blob of bytes."""
    return hashlib.sha256(data).hexdigest()[:20]


def guess_extension(data: bytes, default: str = "jpg") -> str:
    """File extension of an encoded image, by sniffing it with Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").lower()
    except Exception:
        return default
    return {"jpeg": "jpg"}.get(fmt, fmt or default)


def render_derivative(data: bytes, width: int, height: int, quality: int) -> bytes:
    """
    Fill-crop an image to width x height around its center and encode as JPEG.
    """
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img).convert("RGB")
        fitted = ImageOps.fit(img, (width, height), Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    buf = io.BytesIO()
    fitted.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


class StorageClient:
    """
    Google Cloud Storage client for pipeline images.

    Uploads images to a GCS bucket and returns public URLs.
    """

    def __init__(
        self,
        config: Config,
        bucket: Optional[storage.Bucket] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        logger.info("Initializing Cloud Storage Client")
        if bucket is None:
            client = storage.Client(project=config.GCS_PROJECT)
            bucket = client.bucket(config.GCS_BUCKET)
        self.bucket = bucket
        self.root = config.ASSET_ROOT_FOLDER.strip("/")
        self.http = http or httpx.AsyncClient(timeout=config.HTTP_TIMEOUT, follow_redirects=True)

    def _upload_blob(self, name: str, data: bytes, content_type: str) -> str:
        blob = self.bucket.blob(name)
        if not blob.exists():
            blob.upload_from_string(data, content_type=content_type)
            blob.make_public()
        return blob.public_url

    def _download_blob(self, name: str) -> bytes:
        return self.bucket.blob(name).download_as_bytes()

    def _object_name(self, public_id: str, ext: str) -> str:
        return f"{public_id}.{ext}"

    async def upload_bytes(self, data: bytes, folder: str, name_hint: str = "image") -> StoredAsset:
        """
        Upload image bytes.

        Args:
            data: Encoded image
            folder: Logical folder, e.g. "rooms"
            name_hint: Readable prefix for the object name

        Returns:
            StoredAsset with the public URL and the public id
        """
        ext = guess_extension(data)
        public_id = f"{self.root}/{folder.strip('/')}/{name_hint}-{content_id(data)}"
        content_type = mimetypes.types_map.get(f".{ext}", "application/octet-stream")
        try:
            url = await asyncio.to_thread(self._upload_blob, self._object_name(public_id, ext), data, content_type)
        except Exception as e:
            raise UpstreamUnavailable("asset store", f"upload of {public_id} failed: {e}")
        logger.info(f"Uploaded: {public_id} → {url}")
        return StoredAsset(url=url, publicId=f"{public_id}.{ext}")

    async def fetch(self, url: str) -> bytes:
        """Download an image from a URL."""
        try:
            response = await self.http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("asset fetch", f"{url}: {e}")
        return response.content

    async def upload_url(self, url: str, folder: str, name_hint: str = "image-from-url") -> StoredAsset:
        """Re-host a remote image in the asset store."""
        data = await self.fetch(url)
        return await self.upload_bytes(data, folder, name_hint)

    async def derive(self, public_id: str, width: int, height: int, quality: int) -> str:
        """
        URL of a fill-cropped rendition of a stored image.

        The rendition is rendered once and reused afterwards.
        """
        stem = public_id.rsplit(".", 1)[0]
        name = f"{stem}__w{width}_h{height}_q{quality}.jpg"

        def render_and_store() -> str:
            blob = self.bucket.blob(name)
            if blob.exists():
                return blob.public_url
            rendered = render_derivative(self._download_blob(public_id), width, height, quality)
            return self._upload_blob(name, rendered, "image/jpeg")

        try:
            return await asyncio.to_thread(render_and_store)
        except Exception as e:
            raise UpstreamUnavailable("asset store", f"derive of {public_id} failed: {e}")

    async def thumbnails(self, public_id: str) -> Thumbnails:
        """~400px preview and ~1080px medium renditions."""
        urls = {}
        for label, (width, height, quality) in THUMBNAIL_SIZES.items():
            urls[label] = await self.derive(public_id, width, height, quality)
        return Thumbnails(**urls)

    async def cutout(self, public_id: str) -> str:
        """Square product cutout used as the generation reference."""
        width, height, quality = CUTOUT_SIZE
        return await self.derive(public_id, width, height, quality)

    async def close(self) -> None:
        await self.http.aclose()
