"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncAzureOpenAI, AsyncOpenAI

from taskmesh.config import AzureOpenAIConfig, OpenAICompatibleConfig


class LLMPool:
    """Manages shared LLM clients with concurrency limiting."""

    def __init__(self) -> None:
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}
        self._initialized: Dict[str, bool] = {}
        self._model_ids: Dict[str, str] = {}

    def register_azure_openai(self, name: str, config: AzureOpenAIConfig) -> None:
        """Register an Azure OpenAI model configuration."""
        self._register(name, config, config.max_concurrent, config.deployment_name)

    def register_openai_compatible(self, name: str, config: OpenAICompatibleConfig) -> None:
        """Register a self-hosted endpoint speaking the OpenAI chat API."""
        self._register(name, config, config.max_concurrent, config.model)

    def register_client(
        self, name: str, client: Any, *, model_id: Optional[str] = None, max_concurrent: int = 1
    ) -> None:
        """Register an already constructed client exposing ``chat.completions.create``."""
        self._register(name, client, max_concurrent, model_id or name)
        self._initialized[name] = True

    def _register(self, name: str, client: Any, max_concurrent: int, model_id: str) -> None:
        self._clients[name] = client
        self._semaphores[name] = asyncio.Semaphore(max_concurrent)
        self._initialized[name] = False
        self._model_ids[name] = model_id

    def models(self) -> List[str]:
        return list(self._clients)

    def model_id(self, name: str) -> str:
        """Identifier sent to the endpoint for a registered name (deployment or model tag)."""
        return self._model_ids.get(name, name)

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._clients:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        semaphore = self._semaphores[model_name]
        await semaphore.acquire()

        try:
            # Lazy initialization on first use
            if not self._initialized[model_name]:
                self._initialize_client(model_name)

            yield self._clients[model_name]
        finally:
            semaphore.release()

    def _initialize_client(self, model_name: str) -> None:
        """Replace the stored config with a live client."""
        config = self._clients[model_name]

        if isinstance(config, AzureOpenAIConfig):
            self._clients[model_name] = AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
        elif isinstance(config, OpenAICompatibleConfig):
            self._clients[model_name] = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
            )
        self._initialized[model_name] = True
