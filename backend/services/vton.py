import asyncio
import logging
from typing import Optional

from .classify import classify, outcome_from_result
from .config import Settings
from .errors import (
    ConfigurationError,
    GenerationInProgressError,
    MissingImageError,
    NormalizationError,
    TryOnError,
)
from .gemini import GeminiClient, GenerationClient
from .image_normalize import normalize, normalize_with_budget
from .models import (
    Failure,
    GenerationState,
    NormalizedImage,
    Success,
    TryOnOutcome,
    TryOnRequest,
    UploadedImage,
)
from .prompts import build_try_on_prompt
from .relay_client import RelayClient

logger = logging.getLogger(__name__)


def make_client(settings: Settings) -> GenerationClient:
    """Relay topology when TRYON_RELAY_URL is set, direct Gemini calls otherwise."""
    if settings.uses_relay:
        return RelayClient(settings)
    return GeminiClient(settings)


def normalize_upload(image: UploadedImage, settings: Settings) -> NormalizedImage:
    if settings.max_image_bytes > 0:
        return normalize_with_budget(
            image.encoded_payload,
            max_bytes=settings.max_image_bytes,
            max_dimension=settings.max_dimension,
            jpeg_quality=settings.jpeg_quality,
        )
    return normalize(image.encoded_payload, settings.max_dimension, jpeg_quality=settings.jpeg_quality)


def prepare_request(person: UploadedImage, garment: UploadedImage, settings: Settings) -> TryOnRequest:
    """
    Validate and normalize both uploads into a TryOnRequest.

    Raises MissingImageError or NormalizationError; both are local input
    problems and must be reported before anything goes over the network.
    """
    if person.is_empty or garment.is_empty:
        raise MissingImageError("Images are missing base64 data.")

    return TryOnRequest(
        person_image=normalize_upload(person, settings),
        garment_image=normalize_upload(garment, settings),
        instruction=build_try_on_prompt(),
    )


async def generate_try_on(
    person: UploadedImage,
    garment: UploadedImage,
    *,
    client: GenerationClient,
    settings: Settings,
) -> TryOnOutcome:
    """
    Run one single-shot try-on: normalize, call the model once, classify.

    Returns:
        Success(image_reference=data URI) or Failure(kind, message). Failures
        from the client are never raised to the caller.
    """
    try:
        request = prepare_request(person, garment, settings)
    except (MissingImageError, NormalizationError) as e:
        logger.warning(f"Rejected try-on input before calling the model: {e}")
        return classify(e)
    except ValueError as e:
        # Normalizer knobs out of range (e.g. max_dimension <= 0)
        logger.error(f"Invalid normalization settings: {e}")
        return classify(ConfigurationError(str(e)))

    logger.info(
        f"Generating try-on: person {request.person_image.width}x{request.person_image.height}, "
        f"garment {request.garment_image.width}x{request.garment_image.height}"
    )
    try:
        result = await client.generate(request)
    except TryOnError as e:
        outcome = classify(e)
        logger.error(f"Try-on generation failed ({outcome.kind.value}): {e}")
        return outcome

    outcome = outcome_from_result(result)
    if isinstance(outcome, Success):
        logger.info("Try-on image generated")
    return outcome


class TryOnSession:
    """
    Per-user try-on state with at most one generation in flight.

    Each submit() is tagged with a generation token; an outcome is applied to
    `state` only if its token is still the latest one. reset() invalidates the
    token and cancels the in-flight call.
    """

    def __init__(self, client: GenerationClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.state = GenerationState()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def submit(self, person: UploadedImage, garment: UploadedImage) -> Optional[TryOnOutcome]:
        """
        Returns the outcome, or None if the request was superseded by reset().
        Raises GenerationInProgressError if a generation is already running.
        """
        if self.in_flight:
            raise GenerationInProgressError("A try-on generation is already in progress")

        self._generation += 1
        token = self._generation
        self.state = GenerationState(loading=True)

        task = asyncio.ensure_future(
            generate_try_on(person, garment, client=self.client, settings=self.settings)
        )
        self._task = task
        try:
            outcome = await task
        except asyncio.CancelledError:
            if token != self._generation:
                logger.info(f"Try-on generation {token} cancelled by reset")
                return None
            self.state = GenerationState()
            raise
        except Exception as e:
            if token != self._generation:
                logger.info(f"Ignoring failure of superseded try-on generation {token}: {e}")
                return None
            logger.error(f"Try-on generation {token} failed: {type(e).__name__}: {e}", exc_info=True)
            outcome = classify(e)
            self._apply(outcome)
            return outcome
        finally:
            if self._task is task:
                self._task = None

        if token != self._generation:
            logger.info(f"Discarding stale try-on outcome {token} (latest is {self._generation})")
            return None

        self._apply(outcome)
        return outcome

    def reset(self) -> None:
        """Clear the result and drop any in-flight generation."""
        self._generation += 1
        if self.in_flight:
            self._task.cancel()
        self._task = None
        self.state = GenerationState()

    def _apply(self, outcome: TryOnOutcome) -> None:
        if isinstance(outcome, Failure):
            self.state = GenerationState(error=outcome.message, error_kind=outcome.kind)
        else:
            self.state = GenerationState(image_url=outcome.image_reference)
