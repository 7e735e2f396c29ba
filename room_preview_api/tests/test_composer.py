"""
Pipeline tests for the Composer.

Every external service is faked (see conftest.py); the analyzer, refiner,
rasterizer and generation client run for real.
"""

import logging
from types import SimpleNamespace

import pytest

from room_preview_api.analyzer import SceneAnalyzer
from room_preview_api.composer import Composer, normalize_room_image
from room_preview_api.errors import (
    CatalogLookupError,
    GenerationFailure,
    InputValidationError,
    UpstreamUnavailable,
)
from room_preview_api.generator import GenerationClient
from room_preview_api.tests.conftest import (
    ROOM_SIZE,
    FakeCatalog,
    FakePredictions,
    FakeStorage,
    FakeVisionClient,
    make_image_bytes,
)


def build_composer(config, storage, catalog, vision, predictions) -> Composer:
    return Composer(
        storage=storage,
        catalog=catalog,
        analyzer=SceneAnalyzer(config, client=vision),
        generator=GenerationClient(config, client=SimpleNamespace(predictions=predictions)),
    )


class TestNormalizeRoomImage:
    """Tests for room photo normalization."""

    def test_png_becomes_jpeg(self):
        """Test that any decodable upload is re-encoded as JPEG with its size."""
        data, size = normalize_room_image(make_image_bytes(320, 200, fmt="PNG"))
        assert data[:3] == b"\xff\xd8\xff"
        assert size == (320, 200)

    def test_garbage_is_rejected(self):
        """Test that undecodable bytes are a validation error."""
        with pytest.raises(InputValidationError):
            normalize_room_image(b"definitely not an image")


class TestCompose:
    """Tests for the full pipeline."""

    @pytest.mark.asyncio
    async def test_happy_path(self, composer, storage, catalog, predictions, room_image):
        """Test a complete run with every stage succeeding."""
        result = await composer.compose(room_image, "123", idea="algo acogedor")

        assert catalog.calls == ["123"]
        assert storage.ops == [
            "upload_bytes",
            "upload_url:products/raw",
            "cutout",
            "upload_url:generated",
            "thumbnails",
            "thumbnails",
        ]
        assert result.roomImageUrl.startswith("https://store.test/test/rooms/")
        assert result.generatedImageUrl.startswith("https://store.test/test/generated/")
        assert result.generatedImageUrl != result.roomImageUrl
        assert result.productName == "Lámpara Aurora"
        assert result.productUrl == "https://shop.test/products/lampara-aurora"
        assert set(result.thumbnails) == {"before", "after"}
        assert result.embedding is not None
        assert result.skipped == {}
        assert "moderno cálido" in result.message

        # Lamps go to the ceiling zone of the 600x400 room
        rect = result.analysis.finalPlacement
        assert (result.analysis.imageWidth, result.analysis.imageHeight) == ROOM_SIZE
        assert rect.y == 32
        assert rect.height == 80
        assert rect.fits(*ROOM_SIZE)

        created = predictions.created[0]["input"]
        assert created["image"] == result.roomImageUrl
        assert created["reference_image"].endswith("__w1024_h1024_q90.jpg")
        assert "Lámpara Aurora" in created["prompt"]

    @pytest.mark.asyncio
    async def test_form_fields_override_catalog(self, composer, room_image):
        """Test that productName and productUrl from the form take precedence."""
        result = await composer.compose(
            room_image, "123", product_name="Mi lámpara", product_url="https://example.test/p"
        )
        assert result.productName == "Mi lámpara"
        assert result.productUrl == "https://example.test/p"

    @pytest.mark.asyncio
    async def test_hint_round_trip(self, composer, room_image):
        """Test that "arriba a la derecha" lands in the upper-right quadrant."""
        result = await composer.compose(room_image, "123", idea="colócalo arriba a la derecha")

        rect = result.analysis.finalPlacement
        width, height = ROOM_SIZE
        assert rect.x >= width / 2
        assert rect.y + rect.height / 2 < height / 2
        assert rect.fits(width, height)

    @pytest.mark.asyncio
    async def test_cutout_failure_is_skipped(self, config, catalog, vision, predictions, room_image):
        """Test that a failed cutout falls back to the catalog image."""
        storage = FakeStorage(fail_on="cutout")
        composer = build_composer(config, storage, catalog, vision, predictions)

        result = await composer.compose(room_image, "123")

        assert "cutout" in result.skipped
        assert predictions.created[0]["input"]["reference_image"] == "https://cdn.test/lampara.jpg"
        assert result.generatedImageUrl

    @pytest.mark.asyncio
    async def test_skipped_stages_logged_not_returned(self, config, catalog, vision, predictions, room_image, caplog):
        """Test that skip reasons are logged at completion and kept out of the response."""
        storage = FakeStorage(fail_on="cutout")
        composer = build_composer(config, storage, catalog, vision, predictions)

        with caplog.at_level(logging.WARNING, logger="room_preview_api.composer"):
            result = await composer.compose(room_image, "123")

        assert f"Experience {result.sessionId} skipped optional stages" in caplog.text
        assert "cutout" in caplog.text
        assert "skipped" not in result.to_response()

    @pytest.mark.asyncio
    async def test_embedding_failure_is_skipped(self, config, storage, catalog, predictions, room_image):
        """Test that an unusable embedding reply does not abort the pipeline."""
        vision = FakeVisionClient(embedding="no puedo describir esto")
        composer = build_composer(config, storage, catalog, vision, predictions)

        result = await composer.compose(room_image, "123")

        assert result.embedding is None
        assert "embedding" in result.skipped
        assert result.to_response()["embedding"] is None

    @pytest.mark.asyncio
    async def test_unparseable_analysis_still_completes(self, config, storage, catalog, predictions, room_image):
        """Test that a garbage room analysis uses the fallback and finishes."""
        vision = FakeVisionClient(room="The room looks lovely.")
        composer = build_composer(config, storage, catalog, vision, predictions)

        result = await composer.compose(room_image, "123")

        assert result.analysis.fallback is True
        assert (result.analysis.imageWidth, result.analysis.imageHeight) == ROOM_SIZE
        assert result.analysis.finalPlacement.fits(*ROOM_SIZE)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("room_image, product_id", [
        (None, "123"),
        (b"", "123"),
        (make_image_bytes(), None),
        (make_image_bytes(), "   "),
    ])
    async def test_missing_inputs(self, composer, storage, catalog, room_image, product_id):
        """Test that missing inputs fail before any external call."""
        with pytest.raises(InputValidationError) as excinfo:
            await composer.compose(room_image, product_id)
        assert excinfo.value.status_code == 400
        assert catalog.calls == []
        assert storage.ops == []

    @pytest.mark.asyncio
    async def test_invalid_image(self, composer, storage):
        """Test that undecodable room bytes are rejected."""
        with pytest.raises(InputValidationError):
            await composer.compose(b"<html>not an image</html>", "123")
        assert storage.ops == []

    @pytest.mark.asyncio
    async def test_catalog_failure_stops_before_upload(self, config, storage, vision, predictions, room_image):
        """Test that an unknown product fails before any upload or generation."""
        composer = build_composer(config, storage, FakeCatalog(None), vision, predictions)

        with pytest.raises(CatalogLookupError) as excinfo:
            await composer.compose(room_image, "999")

        assert excinfo.value.status_code == 500
        assert storage.ops == []
        assert vision.calls == []
        assert predictions.created == []

    @pytest.mark.asyncio
    async def test_room_upload_failure(self, config, catalog, vision, predictions, room_image):
        """Test that a failed room upload aborts the pipeline."""
        storage = FakeStorage(fail_on="upload_bytes")
        composer = build_composer(config, storage, catalog, vision, predictions)

        with pytest.raises(UpstreamUnavailable):
            await composer.compose(room_image, "123")
        assert predictions.created == []

    @pytest.mark.asyncio
    async def test_generation_failure(self, config, storage, catalog, vision, room_image):
        """Test that a failed generation job surfaces and no thumbnails are built."""
        predictions = FakePredictions(statuses=("failed",), error="model crashed")
        composer = build_composer(config, storage, catalog, vision, predictions)

        with pytest.raises(GenerationFailure):
            await composer.compose(room_image, "123")

        assert "upload_url:generated" not in storage.ops
        assert "thumbnails" not in storage.ops
