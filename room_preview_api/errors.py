"""
Error taxonomy for the room preview pipeline.

Every error carries a ``kind`` tag, the HTTP status it maps to and a
generic message that is safe to show to the shopper. Detail goes to the
exception text and the logs, never to the response body.
"""

GENERIC_FAILURE_MESSAGE = (
    "Tuvimos un problema al generar tu propuesta. Intenta de nuevo en unos minutos."
)


class PipelineError(Exception):
    """Base class for all errors raised by the pipeline."""

    kind = "InternalError"
    status_code = 500
    public_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, detail: str = "", public_message: str | None = None):
        super().__init__(detail or self.kind)
        self.detail = detail
        if public_message is not None:
            self.public_message = public_message


class InputValidationError(PipelineError):
    """A required request field is missing or unusable. User-correctable."""

    kind = "ValidationError"
    status_code = 400

    def __init__(self, public_message: str):
        super().__init__(public_message, public_message=public_message)


class UpstreamUnavailable(PipelineError):
    """An external service was unreachable or answered with a non-success."""

    kind = "UpstreamUnavailable"

    def __init__(self, service: str, detail: str = ""):
        super().__init__(f"{service}: {detail}" if detail else service)
        self.service = service


class CatalogLookupError(UpstreamUnavailable):
    """The product identifier did not resolve in the catalog."""

    def __init__(self, product_id: str, detail: str = ""):
        super().__init__("catalog", detail or f"product {product_id} not found")
        self.product_id = product_id


class ParseError(PipelineError):
    """A model reply could not be decoded as the expected JSON object."""

    kind = "ParseError"


class GenerationFailure(PipelineError):
    """The generation backend failed, returned no output or could not be reached."""

    kind = "GenerationFailure"


class GenerationTimeout(PipelineError):
    """The generation job did not reach a terminal state within the poll bounds."""

    kind = "GenerationTimeout"


class MaskMismatchError(PipelineError):
    """The edit mask does not have the same size as the room image."""

    kind = "MaskMismatch"


class ConfigurationError(PipelineError):
    """A credential the pipeline needs is not configured."""

    kind = "ConfigurationError"
