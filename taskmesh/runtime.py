"""Application runtime composition helpers."""
from __future__ import annotations

from functools import lru_cache

from taskmesh.agents.base import StrategyRegistry
from taskmesh.agents.llm_agent import build_llm_strategies
from taskmesh.config import config
from taskmesh.core.models import ResourceThresholds
from taskmesh.orchestration.orchestrator import Orchestrator
from taskmesh.resources.catalog import GIB
from taskmesh.resources.manager import ResourceManager
from taskmesh.services.llm_pool import LLMPool

DEFAULT_MODEL = "default"


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()

    # Azure OpenAI takes the default slot when configured
    if config.azure_openai:
        pool.register_azure_openai(DEFAULT_MODEL, config.azure_openai)
        pool.register_azure_openai(config.azure_openai.deployment_name, config.azure_openai)

    if config.local_llm:
        pool.register_openai_compatible(config.local_llm.model, config.local_llm)
        if DEFAULT_MODEL not in pool.models():
            pool.register_openai_compatible(DEFAULT_MODEL, config.local_llm)

    return pool


@lru_cache
def get_strategies() -> StrategyRegistry:
    return build_llm_strategies(get_llm_pool())


@lru_cache
def get_resource_manager() -> ResourceManager:
    settings = config.resources
    manager = ResourceManager(
        settings.state_dir,
        thresholds=ResourceThresholds(
            ram_warning=settings.ram_warning,
            ram_critical=settings.ram_critical,
            vram_warning=settings.vram_warning,
            vram_critical=settings.vram_critical,
        ),
        total_vram=int(settings.total_vram_gb * GIB),
    )
    if config.local_llm:
        manager.monitor.mark_model_loaded(config.local_llm.model)
    return manager


@lru_cache
def get_orchestrator() -> Orchestrator:
    return Orchestrator(
        strategies=get_strategies(),
        resources=get_resource_manager(),
        scheduler=config.scheduler,
    )
