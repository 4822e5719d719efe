# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Gemini Provider

Remote-call boundary for the studio. Every method takes the API key as its
first argument so it can be handed to CredentialPool.invoke:

    await pool.invoke(lambda key: provider.acompletion(key, messages))

Text completions are routed through LiteLLM's "gemini/" provider. Calls LiteLLM
does not model well (speech and image output modalities) go straight to the
REST generateContent endpoint over httpx.

Failures keep the HTTP status and Google's status string in the exception
message ("429 RESOURCE_EXHAUSTED: ..."), which is what the pool classifies on.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
import litellm

from ..core.config import PoolSettings

lib_logger = logging.getLogger("gemini_keypool")


class ProviderError(Exception):
    """Base class for remote-call failures."""


class GeminiAPIError(ProviderError):
    """Non-2xx response from the Gemini REST API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code
        self.message = message


class EmptyResponseError(ProviderError):
    """The API answered 200 but produced no candidates."""


class GeminiProvider:
    """
    Thin async client for the Gemini API.

    Holds no key state: the key comes from the pool on every call.
    """

    def __init__(
        self,
        settings: Optional[PoolSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or PoolSettings()
        self._http_client = http_client

    @property
    def model(self) -> str:
        return self._settings.gemini_model

    # =========================================================================
    # LITELLM
    # =========================================================================

    async def acompletion(
        self,
        api_key: str,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Chat completion through LiteLLM.

        Args:
            api_key: Key chosen by the pool
            messages: OpenAI-style message list
            model: Gemini model id without prefix (default from settings)
            **kwargs: Passed through to litellm.acompletion

        Returns:
            LiteLLM ModelResponse
        """
        model_id = model or self.model
        kwargs["api_key"] = api_key
        kwargs.setdefault("timeout", self._settings.gemini_timeout)
        return await litellm.acompletion(
            model=f"gemini/{model_id}", messages=messages, **kwargs
        )

    # =========================================================================
    # REST
    # =========================================================================

    async def generate_content(
        self,
        api_key: str,
        body: Dict[str, Any],
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        POST {api_base}/models/{model}:generateContent.

        Args:
            api_key: Key chosen by the pool
            body: Request payload (contents, generationConfig, ...), passed as is
            model: Gemini model id (default from settings)

        Returns:
            Decoded JSON response

        Raises:
            GeminiAPIError: Non-2xx status
            EmptyResponseError: No candidates in the response
        """
        model_id = model or self.model
        url = f"{self._settings.gemini_api_base}/models/{model_id}:generateContent"
        data = await self._request("POST", url, api_key, json=body)
        if not data.get("candidates"):
            feedback = data.get("promptFeedback") or {}
            reason = feedback.get("blockReason", "no candidates returned")
            raise EmptyResponseError(f"Empty response from {model_id}: {reason}")
        return data

    async def list_models(self, api_key: str) -> List[str]:
        """Model ids visible to the key. Cheap way to check a key works."""
        url = f"{self._settings.gemini_api_base}/models"
        data = await self._request("GET", url, api_key)
        return [
            m.get("name", "").split("/", 1)[-1]
            for m in data.get("models", [])
            if m.get("name")
        ]

    async def _request(
        self, method: str, url: str, api_key: str, **kwargs: Any
    ) -> Dict[str, Any]:
        headers = {"x-goog-api-key": api_key, "Accept": "application/json"}
        timeout = self._settings.gemini_timeout

        if self._http_client is not None:
            response = await self._http_client.request(
                method, url, headers=headers, timeout=timeout, **kwargs
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    method, url, headers=headers, timeout=timeout, **kwargs
                )

        if response.is_error:
            raise GeminiAPIError(response.status_code, _error_message(response))
        return response.json()


# =============================================================================
# RESPONSE HELPERS
# =============================================================================


def _error_message(response: httpx.Response) -> str:
    """'RESOURCE_EXHAUSTED: Resource has been exhausted' style text."""
    try:
        error = response.json().get("error", {})
    except ValueError:
        return response.text[:300] or response.reason_phrase
    if not isinstance(error, dict):
        return str(error)
    status = error.get("status")
    message = error.get("message") or response.reason_phrase
    return f"{status}: {message}" if status else message


def _parts(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = response.get("candidates") or []
    if not candidates:
        return []
    content = candidates[0].get("content") or {}
    return content.get("parts") or []


def extract_text(response: Dict[str, Any]) -> Optional[str]:
    """First text part of the first candidate."""
    for part in _parts(response):
        if "text" in part:
            return part["text"]
    return None


def extract_inline_data(response: Dict[str, Any]) -> Optional[Dict[str, str]]:
    """
    First inline data part ({"mimeType", "data"}) of the first candidate.

    The base64 payload is returned as is; decoding audio or images is up to
    the caller.
    """
    for part in _parts(response):
        inline = part.get("inlineData") or part.get("inline_data")
        if inline:
            return {
                "mimeType": inline.get("mimeType") or inline.get("mime_type", ""),
                "data": inline.get("data", ""),
            }
    return None
