"""
Skill registry: a closed catalog of Skill records keyed by name.

The registry owns the execution discipline every skill goes through:
validate input, check credentials, run, normalize failures. Skills never
raise past `execute`.
"""

from __future__ import annotations

import copy
import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Sequence

from jsonschema import Draft7Validator, SchemaError

from .errors import error_to_result
from .types import Result, Skill, SkillContext, auth_error

logger = logging.getLogger("switchboard")


class SkillRegistrationError(RuntimeError):
    """Raised when the catalog is built with a duplicate name or a bad schema."""


class SkillNotFound(KeyError):
    """Raised when a skill name is not registered."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown skill: {self.name}"


def _validate_with_schema(instance: Any, schema: Dict[str, Any]) -> List[Dict[str, Any]]:
    validator = Draft7Validator(schema)
    errors: List[Dict[str, Any]] = []
    for err in validator.iter_errors(instance):
        errors.append(
            {
                "path": list(err.path),
                "message": err.message,
            }
        )
    return errors


def apply_defaults(raw: Any, schema: Dict[str, Any]) -> Any:
    """Fill top-level properties that declare a `default` and are absent."""
    if not isinstance(raw, dict):
        return raw
    filled = dict(raw)
    for name, prop in (schema.get("properties") or {}).items():
        if name not in filled and isinstance(prop, dict) and "default" in prop:
            filled[name] = copy.deepcopy(prop["default"])
    return filled


class SkillRegistry:
    def __init__(self, skills: Iterable[Skill]):
        self._skills: Dict[str, Skill] = {}
        for skill in skills:
            if skill.name in self._skills:
                raise SkillRegistrationError(f"Duplicate skill name: {skill.name}")
            if skill.input_schema.get("type") != "object":
                raise SkillRegistrationError(f"{skill.name}: input_schema root type must be 'object'")
            try:
                Draft7Validator.check_schema(skill.input_schema)
            except SchemaError as exc:
                raise SkillRegistrationError(f"{skill.name}: invalid input schema: {exc.message}") from exc
            self._skills[skill.name] = skill

    def __contains__(self, name: object) -> bool:
        return name in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    def names(self) -> List[str]:
        return sorted(self._skills)

    def tools(self) -> List[str]:
        return sorted({s.tool for s in self._skills.values()})

    def get(self, name: str) -> Skill:
        try:
            return self._skills[name]
        except KeyError:
            raise SkillNotFound(name) from None

    def by_tool(self, tool: str) -> List[Skill]:
        return [s for s in self._skills.values() if s.tool == tool]

    def filtered(self, enabled: Sequence[str]) -> List[Skill]:
        """
        Skills an agent may call.

        Each entry in `enabled` is either a tool category (enables every skill
        of that category) or an individual skill name. Unknown entries are
        ignored here; agent validation rejects them at write time.
        """
        selected: Dict[str, Skill] = {}
        for entry in enabled:
            if entry in self._skills:
                selected[entry] = self._skills[entry]
                continue
            for skill in self.by_tool(entry):
                selected[skill.name] = skill
        return sorted(selected.values(), key=lambda s: (-s.priority, s.name))

    def is_known(self, entry: str) -> bool:
        return entry in self._skills or any(s.tool == entry for s in self._skills.values())

    async def execute(self, name: str, raw_input: Any, context: SkillContext) -> Result:
        """
        Run a skill by name. Raises SkillNotFound for unknown names; every
        other failure comes back as a failed Result.
        """
        skill = self.get(name)

        params = apply_defaults(raw_input if raw_input is not None else {}, skill.input_schema)
        errors = _validate_with_schema(params, skill.input_schema)
        if errors:
            return Result.fail("VALIDATION_ERROR", "Invalid input parameters", details=errors)

        if skill.integration and context.credentials.for_integration(skill.integration) is None:
            return auth_error(skill.integration.upper())

        try:
            result = await skill.execute(params, context)
        except Exception as exc:
            result = error_to_result(exc)
            logger.warning(
                "skill failed name=%s tenant=%s code=%s message=%s",
                name,
                context.tenant_id,
                result.error.code,
                result.error.message,
            )
            return result

        if not isinstance(result, Result):
            return Result.fail("API_ERROR", f"Skill {name} returned an unsupported result type")
        return result


@lru_cache(maxsize=1)
def get_registry() -> SkillRegistry:
    """Process-wide catalog, built once on first use."""
    from . import knowledge, memory
    from .erp import ERP_SKILLS

    return SkillRegistry([*ERP_SKILLS, *memory.SKILLS, *knowledge.SKILLS])
