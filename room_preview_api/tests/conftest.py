"""
Shared fixtures and in-memory fakes for the external services.
"""

import io
import json
from types import SimpleNamespace
from typing import Optional

import pytest
from PIL import Image

from room_preview_api.analyzer import SceneAnalyzer
from room_preview_api.composer import Composer
from room_preview_api.config import Config
from room_preview_api.errors import CatalogLookupError, UpstreamUnavailable
from room_preview_api.generator import GenerationClient
from room_preview_api.models import ProductRecord, StoredAsset, Thumbnails


ROOM_SIZE = (600, 400)


def make_image_bytes(width: int = ROOM_SIZE[0], height: int = ROOM_SIZE[1], fmt: str = "JPEG") -> bytes:
    """Encoded solid-color test image."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (180, 170, 160)).save(buf, format=fmt)
    return buf.getvalue()


def room_reply(width: int = ROOM_SIZE[0], height: int = ROOM_SIZE[1], fenced: bool = True) -> str:
    """A well-formed room-analysis reply from the vision model."""
    body = json.dumps({
        "imageWidth": width,
        "imageHeight": height,
        "roomStyle": "moderno cálido",
        "detectedAnchors": ["sofa", "wall"],
        "placement": {"x": 100, "y": 80, "width": 200, "height": 120},
        "conflicts": [],
        "finalPlacement": {"x": 100, "y": 80, "width": 200, "height": 120},
    })
    return f"```json\n{body}\n```" if fenced else body


EMBEDDING_REPLY = json.dumps({
    "colors": ["dorado", "negro"],
    "materials": ["metal"],
    "texture": "lisa",
    "pattern": "ninguno",
})


class FakeVisionClient:
    """Stands in for AsyncOpenAI: answers room and embedding prompts."""

    def __init__(self, room: str = None, embedding: str = EMBEDDING_REPLY, error: Exception = None):
        self.room = room if room is not None else room_reply()
        self.embedding = embedding
        self.error = error
        self.calls = []
        self.responses = SimpleNamespace(create=self._create)

    async def _create(self, model: str, input: list):
        self.calls.append({"model": model, "input": input})
        if self.error is not None:
            raise self.error
        prompt = input[0]["content"][0]["text"]
        text = self.room if "imageWidth" in prompt else self.embedding
        if isinstance(text, Exception):
            raise text
        return SimpleNamespace(output_text=text)


class FakePredictions:
    """Stands in for replicate.Client().predictions with scripted statuses."""

    def __init__(self, statuses=("processing", "succeeded"), output=("https://replicate.test/out.jpg",),
                 job_id: Optional[str] = "pred-1", create_error: Exception = None, error: str = None):
        self.statuses = list(statuses)
        self.output = list(output) if isinstance(output, tuple) else output
        self.job_id = job_id
        self.create_error = create_error
        self.error = error
        self.created = []
        self.polled = []
        self.canceled = []

    def _prediction(self, status: str):
        output = self.output if status == "succeeded" else None
        return SimpleNamespace(id=self.job_id, status=status, output=output, error=self.error)

    def create(self, input: dict, **target):
        if self.create_error is not None:
            raise self.create_error
        self.created.append({"input": input, **target})
        return self._prediction("starting")

    def get(self, prediction_id: str):
        self.polled.append(prediction_id)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return self._prediction(status)

    def cancel(self, prediction_id: str):
        self.canceled.append(prediction_id)


class FakeStorage:
    """In-memory asset store that records every operation in order."""

    def __init__(self, fail_on: Optional[str] = None):
        self.ops = []
        self.fail_on = fail_on
        self.counter = 0

    def _maybe_fail(self, op: str):
        self.ops.append(op)
        if self.fail_on == op:
            raise UpstreamUnavailable("asset store", f"{op} failed")

    def _asset(self, folder: str, name_hint: str) -> StoredAsset:
        self.counter += 1
        public_id = f"test/{folder}/{name_hint}-{self.counter}.jpg"
        return StoredAsset(url=f"https://store.test/{public_id}", publicId=public_id)

    async def upload_bytes(self, data: bytes, folder: str, name_hint: str = "image") -> StoredAsset:
        self._maybe_fail("upload_bytes")
        return self._asset(folder, name_hint)

    async def upload_url(self, url: str, folder: str, name_hint: str = "image-from-url") -> StoredAsset:
        self._maybe_fail(f"upload_url:{folder}")
        return self._asset(folder, name_hint)

    async def cutout(self, public_id: str) -> str:
        self._maybe_fail("cutout")
        return f"https://store.test/{public_id}__w1024_h1024_q90.jpg"

    async def thumbnails(self, public_id: str) -> Thumbnails:
        self._maybe_fail("thumbnails")
        return Thumbnails(
            low=f"https://store.test/{public_id}__w400_h400_q70.jpg",
            medium=f"https://store.test/{public_id}__w1080_h1080_q80.jpg",
        )

    async def close(self) -> None:
        pass


class FakeCatalog:
    """Catalog that knows a single product."""

    def __init__(self, product: Optional[ProductRecord] = None, error: Exception = None):
        self.product = product
        self.error = error
        self.calls = []

    async def resolve(self, product_id: str) -> ProductRecord:
        self.calls.append(product_id)
        if self.error is not None:
            raise self.error
        if self.product is None:
            raise CatalogLookupError(product_id)
        return self.product

    async def list_products(self):
        if self.error is not None:
            raise self.error
        return []

    async def close(self) -> None:
        pass


@pytest.fixture
def config():
    return Config(
        GCS_BUCKET="test-bucket",
        SHOPIFY_STORE_DOMAIN="shop.test",
        SHOPIFY_STOREFRONT_TOKEN="token",
        OPENAI_API_KEY="sk-test",
        REPLICATE_API_TOKEN="r8-test",
        REPLICATE_MODEL="owner/inpaint",
        GENERATION_POLL_INTERVAL=0,
        GENERATION_MAX_WAIT=30,
        GENERATION_MAX_POLLS=5,
    )


@pytest.fixture
def lamp_product():
    return ProductRecord(
        id="gid://shopify/Product/123",
        title="Lámpara Aurora",
        handle="lampara-aurora",
        productType="lampara",
        featuredImageUrl="https://cdn.test/lampara.jpg",
        onlineStoreUrl="https://shop.test/products/lampara-aurora",
    )


@pytest.fixture
def room_image():
    return make_image_bytes()


@pytest.fixture
def vision():
    return FakeVisionClient()


@pytest.fixture
def predictions():
    return FakePredictions()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def catalog(lamp_product):
    return FakeCatalog(lamp_product)


@pytest.fixture
def composer(config, storage, catalog, vision, predictions):
    return Composer(
        storage=storage,
        catalog=catalog,
        analyzer=SceneAnalyzer(config, client=vision),
        generator=GenerationClient(config, client=SimpleNamespace(predictions=predictions)),
    )
