"""
Integration with Replicate for comic page image generation.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable as IterableABC
from dataclasses import dataclass
from typing import Any, Callable

import replicate
import requests

from comicbook.common import (
    RemoteServiceError,
    Settings,
    TransientServiceError,
    get_settings,
    normalize_remote_error,
)
from comicbook.common.errors import is_transient_failure

logger = logging.getLogger(__name__)


def _build_flux_input(*, prompt: str) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "aspect_ratio": "2:3",
        "output_format": "png",
        "num_outputs": 1,
    }


def _build_flux_pro_input(*, prompt: str) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "aspect_ratio": "2:3",
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-schnell": _build_flux_input,
    "black-forest-labs/flux-dev": _build_flux_input,
    "black-forest-labs/flux-1.1-pro": _build_flux_pro_input,
}


def _build_replicate_input_payload(*, model_identifier: str, prompt: str) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(_MODEL_INPUT_BUILDERS))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )
    return builder(prompt=prompt)


@dataclass(frozen=True)
class RenderedImage:
    """Raw bytes of a rendered image plus the URL it was served from, if any."""

    image_bytes: bytes
    source_url: str | None = None


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for comic page generation.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to the ``REPLICATE_API_TOKEN`` setting.
    model_identifier:
        Model string in the ``owner/model`` or ``owner/model:version`` format. Falls back
        to the ``REPLICATE_MODEL`` setting.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    session:
        Optional :class:`requests.Session` used to download URL outputs.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        session: requests.Session | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._api_token = api_token or settings.replicate_api_token
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = model_identifier or settings.replicate_model
        self._client = client or replicate.Client(api_token=self._api_token)
        self._session = session or requests.Session()
        self._download_timeout = settings.image_download_timeout_seconds

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    def generate_image(self, prompt: str, **model_kwargs: Any) -> RenderedImage:
        """
        Render ``prompt`` with the configured model and return the first image's bytes.

        Raises
        ------
        TransientServiceError
            The provider or the image host answered with a gateway-level outage.
        RemoteServiceError
            Any other failure, including an empty model output.
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

        replicate_input = _build_replicate_input_payload(
            model_identifier=self._model_identifier,
            prompt=prompt,
        )
        replicate_input.update(model_kwargs)

        try:
            output = self._client.run(self._model_identifier, input=replicate_input)
        except Exception as exc:
            raise normalize_remote_error(exc) from exc

        first = _first_output(output)
        if first is None:
            raise RemoteServiceError("Image model returned no output.")

        if hasattr(first, "read"):
            try:
                data = first.read()
            except Exception as exc:
                raise normalize_remote_error(exc) from exc
            url = getattr(first, "url", None)
            return RenderedImage(image_bytes=data, source_url=str(url) if url else None)

        if isinstance(first, bytes):
            return RenderedImage(image_bytes=first)

        url = str(first)
        return RenderedImage(image_bytes=self._download(url), source_url=url)

    def _download(self, url: str) -> bytes:
        try:
            response = self._session.get(url, timeout=self._download_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = f"Failed to fetch image from URL: {exc}"
            logger.warning(message)
            if is_transient_failure(status_code, message):
                raise TransientServiceError(message, status_code=status_code) from exc
            raise RemoteServiceError(message, status_code=status_code) from exc
        return response.content


def _first_output(raw: Any) -> Any:
    """
    Return the first image reference from a Replicate output (URL, file output, or bytes).
    """
    if raw is None:
        return None

    if isinstance(raw, (str, bytes)) or hasattr(raw, "read"):
        return raw

    if isinstance(raw, IterableABC):
        for item in raw:
            if item is None:
                continue
            nested = _first_output(item) if isinstance(item, (list, tuple)) else item
            if nested is not None:
                return nested
        return None

    return str(raw)
