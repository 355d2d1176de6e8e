"""FastAPI dependency injection."""

from __future__ import annotations

from functools import lru_cache

from canvaspilot.config import settings
from canvaspilot.llm.gateway import ModelGateway
from canvaspilot.llm.providers import build_providers
from canvaspilot.llm.rate_limits import InMemoryRateLimitStore
from canvaspilot.scene.images import FallbackImageSearch, HttpImageLoader, ImageSearch, PexelsSearch, PixabaySearch
from canvaspilot.storage.persistence import PersistenceHooks, build_persistence
from canvaspilot.streaming.runner import SessionRunner
from canvaspilot.streaming.session import SessionStore


def get_settings():
    return settings


@lru_cache(maxsize=1)
def get_rate_limits() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@lru_cache(maxsize=1)
def get_gateway() -> ModelGateway:
    return ModelGateway(
        build_providers(settings),
        get_rate_limits(),
        timeout_s=settings.stream_timeout_s,
        fallback_window_s=settings.rate_limit_fallback_s,
    )


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    return SessionStore(buffer_size=settings.session_event_buffer, on_discard=get_persistence().discard)


@lru_cache(maxsize=1)
def get_persistence() -> PersistenceHooks:
    return build_persistence(settings.data_dir, max_records=settings.session_event_buffer)


def get_image_search() -> ImageSearch | None:
    backends: list[ImageSearch] = []
    if settings.pexels_api_key:
        backends.append(PexelsSearch(settings.pexels_api_key))
    if settings.pixabay_api_key:
        backends.append(PixabaySearch(settings.pixabay_api_key))
    return FallbackImageSearch(backends) if backends else None


@lru_cache(maxsize=1)
def get_runner() -> SessionRunner:
    return SessionRunner(
        get_gateway(),
        get_persistence(),
        settings.budget_config(),
        image_loader=HttpImageLoader(),
        image_search=get_image_search(),
    )
