"""Embedding backends package for mgrep-local - CPU, GPU-server and remote API embedders."""

from .base_provider import BaseEmbedder
from .cpu_provider import CpuEmbedder
from .gpu_server_provider import GpuServerEmbedder, check_gpu_server
from .openai_provider import OpenAIEmbedder

__all__ = [
    "BaseEmbedder",
    "CpuEmbedder",
    "GpuServerEmbedder",
    "OpenAIEmbedder",
    "check_gpu_server",
]
