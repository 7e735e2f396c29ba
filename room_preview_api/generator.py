"""
Generation Client

Submits one inpainting prediction to Replicate and polls it to a terminal
state. The Replicate SDK is synchronous, so every call runs in a worker
thread and the poll wait is an asyncio sleep: other requests keep being
served while a job is in flight.

Polling is bounded by both a maximum duration and a maximum number of
polls; exceeding either raises GenerationTimeout and cancels the remote job.
The remote job is also canceled if the awaiting task itself is cancelled.
"""

import asyncio
import logging
import time
from typing import Any, Optional

import replicate

from room_preview_api.config import Config
from room_preview_api.errors import GenerationFailure, GenerationTimeout
from room_preview_api.mask import to_data_uri
from room_preview_api.models import GenerationJob

logger = logging.getLogger(__name__)

# Replicate status -> observed job status
STATUS_MAP = {
    "starting": "pending",
    "processing": "processing",
    "succeeded": "succeeded",
    "failed": "failed",
    "canceled": "failed",
}

DEFAULT_SAMPLING = {
    "reference_strength": 0.85,
    "guidance": 5,
    "num_inference_steps": 28,
    "strength": 0.9,
    "output_format": "jpg",
}


def first_output(output: Any) -> Optional[str]:
    """Pick the first output reference from a prediction's output field."""
    if isinstance(output, str):
        return output or None
    if isinstance(output, (list, tuple)):
        for item in output:
            if item:
                return str(item)
        return None
    if output:
        return str(output)
    return None


def to_job(prediction: Any) -> GenerationJob:
    """Translate a Replicate prediction into a GenerationJob."""
    status = STATUS_MAP.get(getattr(prediction, "status", None) or "", "pending")
    return GenerationJob(
        externalId=getattr(prediction, "id", "") or "",
        status=status,
        outputUrl=first_output(getattr(prediction, "output", None)) if status == "succeeded" else None,
        error=str(getattr(prediction, "error", "") or "") or None,
    )


def model_target(model_id: str) -> dict:
    """
    Map a configured model identifier to the create() keyword Replicate expects.

    "owner/name:version" and bare version hashes pin a version;
    "owner/name" runs the model's latest version.
    """
    if ":" in model_id:
        return {"version": model_id.split(":", 1)[1]}
    if "/" in model_id:
        return {"model": model_id}
    return {"version": model_id}


class GenerationClient:
    """Asynchronous facade over Replicate predictions."""

    def __init__(self, config: Config, client: Optional[Any] = None):
        self.client = client or replicate.Client(api_token=config.REPLICATE_API_TOKEN)
        self.target = model_target(config.REPLICATE_MODEL)
        self.poll_interval = config.GENERATION_POLL_INTERVAL
        self.max_wait = config.GENERATION_MAX_WAIT
        self.max_polls = config.GENERATION_MAX_POLLS

    async def submit(self, inputs: dict) -> GenerationJob:
        """
        Create the prediction.

        Raises:
            GenerationFailure: On transport errors or a reply without a job id
        """
        try:
            prediction = await asyncio.to_thread(self.client.predictions.create, input=inputs, **self.target)
        except Exception as e:
            raise GenerationFailure(f"prediction submission failed: {e}")

        job = to_job(prediction)
        if not job.externalId:
            raise GenerationFailure("prediction submission returned no job id")
        logger.info(f"Prediction created: {job.externalId} (status: {job.status})")
        return job

    async def poll(self, external_id: str) -> GenerationJob:
        """Fetch the current state of a prediction."""
        try:
            prediction = await asyncio.to_thread(self.client.predictions.get, external_id)
        except Exception as e:
            raise GenerationFailure(f"polling prediction {external_id} failed: {e}")
        return to_job(prediction)

    async def cancel(self, external_id: str) -> None:
        """Best-effort cancellation of a remote prediction."""
        try:
            await asyncio.to_thread(self.client.predictions.cancel, external_id)
            logger.info(f"Prediction {external_id} canceled")
        except Exception as e:
            logger.warning(f"Could not cancel prediction {external_id}: {e}")

    async def wait(self, job: GenerationJob) -> GenerationJob:
        """
        Poll until the job is terminal.

        Raises:
            GenerationTimeout: If the duration or poll-count bound is exceeded
        """
        start_time = time.monotonic()
        polls = 0
        while job.status not in ("succeeded", "failed"):
            elapsed = time.monotonic() - start_time
            if polls >= self.max_polls or elapsed >= self.max_wait:
                await self.cancel(job.externalId)
                raise GenerationTimeout(
                    f"prediction {job.externalId} not finished after {polls} polls / {elapsed:.1f}s"
                )
            await asyncio.sleep(self.poll_interval)
            job = await self.poll(job.externalId)
            polls += 1
            logger.info(f"[{time.monotonic() - start_time:.1f}s] Prediction {job.externalId}: {job.status}")
        return job

    async def generate(
        self,
        scene_image_url: str,
        mask_bytes: bytes,
        prompt: str,
        reference_image_url: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        sampling: Optional[dict] = None,
    ) -> str:
        """
        Run one inpainting job end to end.

        Args:
            scene_image_url: Public URL of the room image
            mask_bytes: PNG mask, 255 = editable
            prompt: Generation prompt
            reference_image_url: Product cutout used as visual reference
            negative_prompt: Things the model must avoid
            sampling: Overrides for the default sampling parameters

        Returns:
            URL of the generated image

        Raises:
            GenerationFailure: Terminal failure, missing output or transport error
            GenerationTimeout: Poll bounds exceeded
        """
        inputs = {
            "image": scene_image_url,
            "mask": to_data_uri(mask_bytes),
            "prompt": prompt,
            **DEFAULT_SAMPLING,
            **(sampling or {}),
        }
        if reference_image_url:
            inputs["reference_image"] = reference_image_url
        if negative_prompt:
            inputs["negative_prompt"] = negative_prompt

        logger.info(f"Submitting generation: model={self.target}, image={scene_image_url}")
        job = await self.submit(inputs)
        try:
            job = await self.wait(job)
        except asyncio.CancelledError:
            logger.warning(f"Request cancelled while waiting on {job.externalId}, canceling remote job")
            await asyncio.shield(self.cancel(job.externalId))
            raise

        if job.status == "failed":
            logger.error(f"Prediction {job.externalId} failed: {job.error}")
            raise GenerationFailure(f"prediction {job.externalId} failed: {job.error or 'unknown error'}")
        if not job.outputUrl:
            raise GenerationFailure(f"prediction {job.externalId} succeeded without output")

        logger.info(f"Prediction {job.externalId} output: {job.outputUrl}")
        return job.outputUrl
