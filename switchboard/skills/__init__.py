"""Typed business-data operations the model may call during generation."""

from .registry import SkillNotFound, SkillRegistry, get_registry
from .types import Result, Skill, SkillContext

__all__ = [
    "Result",
    "Skill",
    "SkillContext",
    "SkillNotFound",
    "SkillRegistry",
    "get_registry",
]
