"""Preprocessing functions for archetypal analysis."""

from .basic import generate_synthetic

__all__ = [
    "generate_synthetic",
]
