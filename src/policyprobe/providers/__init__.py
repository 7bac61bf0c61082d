"""Compute providers for probe environments."""

from .docker import DockerProvider

__all__ = ["DockerProvider"]
