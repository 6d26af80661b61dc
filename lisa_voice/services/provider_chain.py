"""
First-success provider chain.

Providers are tried in priority order. Every call except the guaranteed
fallback is time-boxed; a provider that times out or fails is logged and
skipped for this call only.
"""
import asyncio
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

import structlog

from lisa_voice.exceptions import AllProvidersFailed, ProviderTimeout

logger = structlog.get_logger()

P = TypeVar("P")
R = TypeVar("R")


def provider_name(provider: Any) -> str:
    return getattr(provider, "name", None) or type(provider).__name__


class ProviderChain(Generic[P]):
    """
    Ordered list of interchangeable providers.

    Args:
        providers: Providers in priority order
        timeout_seconds: Time box for each non-fallback call
        guaranteed_fallback: Last provider is the backstop and is awaited without a time box
    """

    def __init__(
        self,
        providers: Sequence[P],
        timeout_seconds: float = 8.0,
        guaranteed_fallback: bool = True,
    ) -> None:
        self.providers = list(providers)
        self.timeout_seconds = timeout_seconds
        self.guaranteed_fallback = guaranteed_fallback

    @property
    def names(self) -> list[str]:
        return [provider_name(p) for p in self.providers]

    async def run(self, operation: str, call: Callable[[P], Awaitable[R]]) -> R:
        """
        Run call against each provider until one succeeds.

        Raises:
            AllProvidersFailed: no provider produced a result
        """
        errors: dict[str, str] = {}
        last_index = len(self.providers) - 1

        for index, provider in enumerate(self.providers):
            name = provider_name(provider)
            is_fallback = self.guaranteed_fallback and index == last_index

            try:
                if is_fallback:
                    result = await call(provider)
                else:
                    # wait_for cancels the call on timeout, so a late result is dropped
                    result = await asyncio.wait_for(call(provider), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                error = ProviderTimeout(name, self.timeout_seconds)
                errors[name] = error.message
                logger.warning(
                    "provider_timeout",
                    operation=operation,
                    provider=name,
                    timeout=self.timeout_seconds,
                )
                continue
            except Exception as e:
                errors[name] = str(e)
                logger.warning(
                    "provider_failed",
                    operation=operation,
                    provider=name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue

            if errors:
                logger.info(
                    "provider_fallback_used",
                    operation=operation,
                    provider=name,
                    failed=list(errors),
                )
            return result

        raise AllProvidersFailed(operation, errors)
