"""
Prompts for the generation agent.
"""
from .generation import (
    build_error_fix_prompt,
    build_generation_prompt,
    build_modification_prompt,
)

__all__ = [
    "build_error_fix_prompt",
    "build_generation_prompt",
    "build_modification_prompt",
]
