"""
Model registry.

Maps logical model ids ("anthropic/claude-sonnet-4.5") to the ids the direct
provider APIs expect, and keeps a catalogue of models the aggregation
provider currently serves. A turn that hits an unknown model triggers one
``refresh()`` before the task is retried.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..domain.ports import IModelRegistry
from ..exceptions import NetworkError, ServerError
from ..resilience import retry_async

logger = logging.getLogger(__name__)

DIRECT_PREFIXES = ("anthropic/", "openai/")

DEFAULT_MODEL_MAP = {
    "anthropic/claude-opus-4.5": "claude-opus-4-5",
    "anthropic/claude-sonnet-4.5": "claude-sonnet-4-5",
    "anthropic/claude-haiku-4.5": "claude-haiku-4-5",
    "anthropic/claude-sonnet-4": "claude-sonnet-4-20250514",
    "openai/gpt-5": "gpt-5",
    "openai/gpt-4.1": "gpt-4.1",
}


def derive_direct_id(model_id: str) -> Optional[str]:
    """Best-effort native id for a namespaced model id."""
    if model_id.startswith("anthropic/"):
        return model_id[len("anthropic/"):].replace(".", "-")
    if model_id.startswith("openai/"):
        return model_id[len("openai/"):]
    return None


class ModelRegistry(IModelRegistry):
    """In-process model catalogue backed by the aggregation provider's list.

    Usage:
        registry = ModelRegistry(api_key=settings.openrouter_api_key)
        native = registry.resolve("anthropic/claude-sonnet-4.5")
        await registry.refresh()
    """

    def __init__(
        self,
        models: Optional[dict[str, str]] = None,
        base_url: str = "https://openrouter.ai/api/v1",
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._models = dict(DEFAULT_MODEL_MAP if models is None else models)
        self._catalogue: Optional[set[str]] = None
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http_client = http_client
        self.refresh_count = 0

    def resolve(self, model_id: str) -> Optional[str]:
        """Return the direct-provider id, or None when only the aggregator fits.

        Once a catalogue has been loaded, ids it does not list are treated as
        retired and resolve to None.
        """
        if self._catalogue is not None and model_id not in self._catalogue:
            return None
        if model_id in self._models:
            return self._models[model_id]
        return derive_direct_id(model_id)

    async def refresh(self) -> None:
        """Reload the catalogue from the aggregation provider."""
        self.refresh_count += 1
        payload = await retry_async(self._fetch_models, max_attempts=2)

        ids = {item["id"] for item in payload.get("data", []) if item.get("id")}
        if not ids:
            logger.warning("Model catalogue refresh returned no models; keeping previous")
            return

        self._catalogue = ids
        logger.info(f"Model catalogue refreshed: {len(ids)} models")

    async def _fetch_models(self) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.base_url}/models"

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, headers=headers)
        except httpx.TransportError as e:
            raise NetworkError(f"Model catalogue unreachable: {e}", cause=e) from e

        if response.status_code >= 500:
            raise ServerError(
                f"Model catalogue returned {response.status_code}",
                status_code=response.status_code,
            )
        response.raise_for_status()
        return response.json()
