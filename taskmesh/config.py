"""Configuration management for the orchestrator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


@dataclass(frozen=True)
class OpenAICompatibleConfig:
    """Any endpoint speaking the OpenAI chat API, e.g. a local Ollama server."""

    base_url: str
    api_key: str = "ollama"
    model: str = "deepseek-coder:6.7b"
    max_concurrent: int = 4


@dataclass(frozen=True)
class SchedulerConfig:
    """Control-loop tuning."""

    tick_interval_ms: int = 1000
    default_agent_timeout_ms: int = 300_000
    rebalance_threshold: int = 3


@dataclass(frozen=True)
class ResourceConfig:
    """Resource monitoring and persistence settings."""

    state_dir: Path = Path(".taskmesh")
    monitor_interval_ms: int = 5000
    total_vram_gb: float = 28.0
    ram_warning: float = 85.0
    ram_critical: float = 95.0
    vram_warning: float = 90.0
    vram_critical: float = 95.0


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    resources: ResourceConfig = field(default_factory=ResourceConfig)
    azure_openai: Optional[AzureOpenAIConfig] = None
    local_llm: Optional[OpenAICompatibleConfig] = None
    log_level: str = "INFO"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")

        azure_config = None
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        local_config = None
        base_url = os.getenv("TASKMESH_LLM_BASE_URL")
        if base_url:
            local_config = OpenAICompatibleConfig(
                base_url=base_url,
                api_key=os.getenv("TASKMESH_LLM_API_KEY", "ollama"),
                model=os.getenv("TASKMESH_LLM_MODEL", "deepseek-coder:6.7b"),
                max_concurrent=int(os.getenv("TASKMESH_LLM_MAX_CONCURRENT", "4")),
            )

        scheduler = SchedulerConfig(
            tick_interval_ms=int(os.getenv("TASKMESH_TICK_INTERVAL_MS", "1000")),
            default_agent_timeout_ms=int(os.getenv("TASKMESH_AGENT_TIMEOUT_MS", "300000")),
            rebalance_threshold=int(os.getenv("TASKMESH_REBALANCE_THRESHOLD", "3")),
        )
        resources = ResourceConfig(
            state_dir=Path(os.getenv("TASKMESH_STATE_DIR", ".taskmesh")),
            monitor_interval_ms=int(os.getenv("TASKMESH_MONITOR_INTERVAL_MS", "5000")),
            total_vram_gb=float(os.getenv("TASKMESH_TOTAL_VRAM_GB", "28")),
            ram_warning=float(os.getenv("TASKMESH_RAM_WARNING", "85")),
            ram_critical=float(os.getenv("TASKMESH_RAM_CRITICAL", "95")),
            vram_warning=float(os.getenv("TASKMESH_VRAM_WARNING", "90")),
            vram_critical=float(os.getenv("TASKMESH_VRAM_CRITICAL", "95")),
        )

        return cls(
            scheduler=scheduler,
            resources=resources,
            azure_openai=azure_config,
            local_llm=local_config,
            log_level=os.getenv("TASKMESH_LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "development"),
            host=os.getenv("TASKMESH_HOST", "127.0.0.1"),
            port=int(os.getenv("TASKMESH_PORT", "8000")),
        )


# Global config instance
config = Config.from_env()
