"""Static footprints of the local models agents run on.

Used to estimate VRAM usage; there is no hardware query behind these figures.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

GIB = 1024 ** 3


@dataclass(frozen=True, slots=True)
class ModelProfile:
    tag: str
    vram_gb: float
    tokens_per_second: int
    role: str
    specializations: Tuple[str, ...] = ()

    @property
    def vram_bytes(self) -> int:
        return int(self.vram_gb * GIB)


AVAILABLE_MODELS: Dict[str, ModelProfile] = {
    "deepseek-coder-33b": ModelProfile(
        tag="deepseek-coder:33b",
        vram_gb=20,
        tokens_per_second=20,
        role="Main Orchestrator",
        specializations=("architecture", "complex-reasoning", "system-design", "code-review"),
    ),
    "deepseek-coder-6.7b": ModelProfile(
        tag="deepseek-coder:6.7b",
        vram_gb=4,
        tokens_per_second=50,
        role="Implementation Agent",
        specializations=("implementation", "debugging", "refactoring", "rapid-coding"),
    ),
    "codestral-6.7b": ModelProfile(
        tag="codestral:6.7b",
        vram_gb=4,
        tokens_per_second=45,
        role="Code Specialist",
        specializations=("code-generation", "optimization", "patterns", "best-practices"),
    ),
    "qwen2.5-coder-7b": ModelProfile(
        tag="qwen2.5-coder:7b",
        vram_gb=4,
        tokens_per_second=55,
        role="Documentation Specialist",
        specializations=("documentation", "comments", "api-design", "testing"),
    ),
    "deepseek-coder-1.3b": ModelProfile(
        tag="deepseek-coder:1.3b",
        vram_gb=1,
        tokens_per_second=100,
        role="Quick Task Agent",
        specializations=("quick-fixes", "syntax-checking", "simple-tasks", "validation"),
    ),
    "starcoder2-7b": ModelProfile(
        tag="starcoder2:7b",
        vram_gb=4,
        tokens_per_second=50,
        role="Multi-Language Specialist",
        specializations=("multi-language", "translation", "cross-platform", "polyglot"),
    ),
    "codet5-770m": ModelProfile(
        tag="codet5:770m",
        vram_gb=1,
        tokens_per_second=120,
        role="Test Generator",
        specializations=("test-generation", "unit-tests", "mocking", "assertions"),
    ),
}


_BY_TAG: Dict[str, ModelProfile] = {profile.tag: profile for profile in AVAILABLE_MODELS.values()}


def footprint_bytes(model_name: str) -> int:
    """VRAM estimate for a catalog key or model tag; unknown models count as zero."""
    profile = AVAILABLE_MODELS.get(model_name) or _BY_TAG.get(model_name)
    return profile.vram_bytes if profile else 0
