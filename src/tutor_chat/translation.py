from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import httpx
from loguru import logger

from tutor_chat.errors import QuotaExceededError

_TRANSLATE_PATH = "/api/chat/translate"
_CACHE_TTL_SECONDS = 24 * 60 * 60
_CACHE_MAX_ENTRIES = 1000


@runtime_checkable
class TranslationService(Protocol):
    async def translate(
        self,
        text: str,
        *,
        target_language: str,
        source_language: str,
        user_id: str,
    ) -> str: ...


class HttpTranslationClient:
    def __init__(self, base_url: str, *, timeout: float = 30.0, client: httpx.AsyncClient | None = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def translate(
        self,
        text: str,
        *,
        target_language: str,
        source_language: str,
        user_id: str,
    ) -> str:
        response = await self._client.post(
            _TRANSLATE_PATH,
            json={
                "text": text,
                "targetLanguage": target_language,
                "sourceLanguage": source_language,
                "userId": user_id,
            },
        )
        if response.status_code == 429:
            raise QuotaExceededError("Translation rate limit exceeded")
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code} from translation service",
                request=response.request,
                response=response,
            )
        body = response.json()
        if not isinstance(body, dict) or "translatedText" not in body:
            raise ValueError(f"Unexpected translation response: {body!r}")
        return str(body["translatedText"])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TranslationOverlay:
    """Best-effort translation: every failure comes back as ``None``."""

    def __init__(
        self,
        service: TranslationService | None,
        *,
        enabled: bool,
        user_id: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._service = service
        self._enabled = enabled and service is not None
        self._user_id = user_id
        self._clock = clock
        self._cache: OrderedDict[tuple[str, str, str], tuple[float, str]] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def translate(self, text: str, target_lang: str, source_lang: str) -> str | None:
        if not self._enabled or self._service is None or target_lang == source_lang:
            return None

        cache_key = (text, target_lang, source_lang)
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        try:
            translated = await self._service.translate(
                text,
                target_language=target_lang,
                source_language=source_lang,
                user_id=self._user_id,
            )
        except QuotaExceededError:
            logger.warning("Translation rate limit exceeded")
            return None
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as ex:
            logger.error(f"Translation failed: {ex}")
            return None

        self._remember(cache_key, translated)
        return translated

    def _cached(self, key: tuple[str, str, str]) -> str | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > _CACHE_TTL_SECONDS:
            del self._cache[key]
            return None
        return value

    def _remember(self, key: tuple[str, str, str], value: str) -> None:
        self._cache[key] = (self._clock(), value)
        self._cache.move_to_end(key)
        while len(self._cache) > _CACHE_MAX_ENTRIES:
            self._cache.popitem(last=False)
