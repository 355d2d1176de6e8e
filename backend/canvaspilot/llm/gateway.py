"""Model gateway — picks a (provider, credential, model) candidate and streams its text.

Candidates are tried in order: each provider's credentials, and for each
credential its provider's models. Credentials and models under a rate-limit
record are skipped without a request. A candidate that fails or times out
before producing its first fragment is recorded and the next one is tried.
A candidate that fails after it has produced fragments is handled the same
way, except that a StreamRestart marker is yielded before the next
candidate's text so the consumer can discard what it parsed. Only when all
candidates are gone does the stream raise ProvidersExhaustedError.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from canvaspilot.llm.prompts import Prompt
from canvaspilot.llm.providers import Provider, ProviderError
from canvaspilot.llm.rate_limits import RateLimitStore, credential_key, model_key, parse_retry_after
from canvaspilot.models.events import SessionState
from canvaspilot.streaming.session import StreamingSession

logger = logging.getLogger(__name__)

ALL_FAILED_MESSAGE = "All providers failed"


class ProvidersExhaustedError(Exception):
    def __init__(self, failures: list[str]) -> None:
        detail = "; ".join(failures[-5:]) if failures else "no provider is configured"
        super().__init__(f"{ALL_FAILED_MESSAGE} ({detail})")
        self.failures = failures


@dataclass
class StreamRestart:
    """Yielded between candidates when the previous one failed mid-stream."""

    failed: str
    reason: str


@dataclass
class Candidate:
    provider: Provider
    credential: str
    model: str

    @property
    def label(self) -> str:
        return f"{self.provider.name}:{self.model}"


class ModelGateway:
    def __init__(
        self,
        providers: list[Provider],
        rate_limits: RateLimitStore,
        *,
        timeout_s: float = 120.0,
        fallback_window_s: float = 60.0,
    ) -> None:
        self.providers = providers
        self.rate_limits = rate_limits
        self.timeout_s = timeout_s
        self.fallback_window_s = fallback_window_s

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------

    def _credential_available(self, provider: Provider, credential: str) -> bool:
        return self.rate_limits.is_available(credential_key(provider.name, credential))

    def _model_available(self, provider: Provider, model: str) -> bool:
        return self.rate_limits.is_available(model_key(provider.name, model))

    def candidates(self) -> list[Candidate]:
        """Every currently-available candidate, in the order they would be tried."""
        found = []
        for provider in self.providers:
            for credential in provider.credentials:
                if not self._credential_available(provider, credential):
                    continue
                for model in provider.models:
                    if self._model_available(provider, model):
                        found.append(Candidate(provider, credential, model))
        return found

    def provider_status(self) -> list[dict]:
        status = []
        for provider in self.providers:
            status.append(
                {
                    "name": provider.name,
                    "configured": provider.configured,
                    "keys_total": len(provider.credentials),
                    "keys_available": sum(1 for c in provider.credentials if self._credential_available(provider, c)),
                    "models_total": len(provider.models),
                    "models_available": sum(1 for m in provider.models if self._model_available(provider, m)),
                }
            )
        return status

    def record_rate_limit(self, provider: Provider, credential: str, model: str, message: str) -> float:
        seconds = parse_retry_after(message)
        if seconds is None:
            seconds = self.fallback_window_s
        self.rate_limits.mark_limited(credential_key(provider.name, credential), seconds)
        self.rate_limits.mark_limited(model_key(provider.name, model), seconds)
        logger.info("Rate limited: %s key %s for %.0fs", provider.name, credential_key(provider.name, credential), seconds)
        return seconds

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(self, session: StreamingSession, prompt: Prompt) -> AsyncIterator[str | StreamRestart]:
        """Text fragments from the first candidate that answers in full.

        Moves the session to CONNECTING on dispatch and to STREAMING on the
        first fragment; the caller owns the terminal transition.
        """
        if session.state == SessionState.CREATED:
            session.transition(SessionState.CONNECTING)

        failures: list[str] = []
        restart: StreamRestart | None = None
        for provider in self.providers:
            if not provider.configured:
                logger.info("Skipping %s: not configured", provider.name)
                continue

            for credential in provider.credentials:
                if not self._credential_available(provider, credential):
                    logger.info("Skipping rate-limited %s key %s", provider.name, credential_key(provider.name, credential))
                    continue

                for model in provider.models:
                    if not self._credential_available(provider, credential):
                        # limited by an earlier model on this key
                        break
                    if not self._model_available(provider, model):
                        logger.info("Skipping rate-limited model %s:%s", provider.name, model)
                        continue

                    candidate = Candidate(provider, credential, model)
                    upstream = provider.stream_text(credential, model, prompt, self.timeout_s)
                    first = await self._first_fragment(candidate, upstream, failures)
                    if first is None:
                        continue

                    session.provider_model = candidate.label
                    if session.state == SessionState.CONNECTING:
                        session.transition(SessionState.STREAMING)
                    logger.info("Streaming from %s", candidate.label)

                    if restart is not None:
                        yield restart
                        restart = None
                    try:
                        yield first
                        async for fragment in upstream:
                            yield fragment
                    except ProviderError as e:
                        if e.is_rate_limited:
                            self.record_rate_limit(provider, credential, model, e.message)
                        reason = e.message[:200]
                    except Exception as e:
                        reason = f"{type(e).__name__}: {e}"
                    else:
                        return
                    finally:
                        await upstream.aclose()

                    logger.warning("  %s FAILED mid-stream: %s", candidate.label, reason)
                    failures.append(f"{candidate.label}: {reason}")
                    restart = StreamRestart(candidate.label, reason)

        logger.error("%s after %d attempt(s)", ALL_FAILED_MESSAGE, len(failures))
        raise ProvidersExhaustedError(failures)

    async def _first_fragment(
        self,
        candidate: Candidate,
        upstream: AsyncIterator[str],
        failures: list[str],
    ) -> str | None:
        """First fragment of ``upstream`` within the timeout, or None after recording the failure."""
        try:
            return await asyncio.wait_for(anext(upstream), timeout=self.timeout_s)
        except StopAsyncIteration:
            reason = "empty response"
        except asyncio.TimeoutError:
            reason = f"timed out after {self.timeout_s:.0f}s"
        except ProviderError as e:
            if e.is_rate_limited:
                self.record_rate_limit(candidate.provider, candidate.credential, candidate.model, e.message)
            reason = e.message[:200]
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"

        logger.warning("  %s FAILED: %s", candidate.label, reason)
        failures.append(f"{candidate.label}: {reason}")
        await upstream.aclose()
        return None
