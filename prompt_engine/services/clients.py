import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from openai import AsyncOpenAI

from prompt_engine.config import Settings
from prompt_engine.errors import ConfigurationError

logger = logging.getLogger(__name__)


class LazyClient:
    """An OpenAI-compatible client opened on first use and shared afterwards.

    Concurrent first callers wait on the same initialisation instead of each
    opening their own connection.
    """

    def __init__(self, name: str, api_key: Optional[str], base_url: str, timeout: float,
                 factory: Optional[Callable[[], Any]] = None):
        self.name = name
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._factory = factory or self._default_factory
        self._client: Any = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _default_factory(self) -> AsyncOpenAI:
        # retries are decided by the callers, not the SDK
        return AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0)

    async def get(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is None:
                if not self.configured:
                    raise ConfigurationError(f"{self.name} API key is not configured")
                client = self._factory()
                if inspect.isawaitable(client):
                    client = await client
                logger.info("Opened %s client (%s)", self.name, self.base_url)
                self._client = client
        return self._client

    async def aclose(self) -> None:
        client, self._client = self._client, None
        close = getattr(client, "close", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result


@dataclass
class AIClients:
    research: LazyClient
    composer: LazyClient
    images: LazyClient

    async def aclose(self) -> None:
        for client in (self.research, self.composer, self.images):
            await client.aclose()


def build_clients(settings: Settings) -> AIClients:
    return AIClients(
        research=LazyClient("perplexity", settings.PERPLEXITY_API_KEY, settings.PERPLEXITY_BASE_URL,
                            settings.RESEARCH_TIMEOUT_SECONDS),
        composer=LazyClient("openrouter", settings.OPENROUTER_API_KEY, settings.OPENROUTER_BASE_URL,
                            settings.COMPOSER_TIMEOUT_SECONDS),
        images=LazyClient("images", settings.IMAGE_API_KEY, settings.IMAGE_BASE_URL,
                          settings.IMAGE_TIMEOUT_SECONDS),
    )
