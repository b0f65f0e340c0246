from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .models import AgentDefinition

logger = logging.getLogger("switchboard")

# Built-in agent templates live next to the package (switchboard/agents/*.yaml).
TEMPLATES_DIR = Path(__file__).parent / "agents"

SLUG_RE = re.compile(r"^[a-z][a-z0-9_-]{1,48}$")
_MAX_PROMPT_CHARS = 20_000


@dataclass
class AgentTemplate:
    id: str
    version: str
    name: str
    description: str
    system_prompt: str
    tools: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    rag_enabled: bool = False

    def to_definition(self) -> AgentDefinition:
        """A tenant agent seeded from this template."""
        return AgentDefinition(
            slug=self.id,
            name=self.name,
            description=self.description,
            system_prompt=self.system_prompt,
            tool_names=list(self.tools),
            keywords=list(self.keywords),
            rag_enabled=self.rag_enabled,
            is_active=True,
            template_origin_id=self.id,
        )


class AgentLoadError(RuntimeError):
    """Raised when a built-in agent template cannot be loaded or validated."""


def _read_template_yaml(template_id: str) -> Dict[str, Any]:
    path = TEMPLATES_DIR / f"{template_id}.yaml"
    if not path.exists():
        raise AgentLoadError(f"Agent template not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise AgentLoadError("Agent template YAML must deserialize to a mapping")

    return data


def _string_list(raw: Any, *, field_name: str, template_id: str) -> List[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise AgentLoadError(f"Agent template '{template_id}': {field_name} must be a list")
    return [str(item).strip().lower() if field_name == "keywords" else str(item).strip() for item in raw if str(item).strip()]


def load_template(template_id: str) -> AgentTemplate:
    """Load and validate a built-in agent template by id."""
    raw = _read_template_yaml(template_id)

    try:
        agent_id = str(raw["id"])
        prompt = str(raw["system_prompt"])
    except KeyError as exc:
        raise AgentLoadError(f"Agent template missing required field: {exc.args[0]}") from exc

    if agent_id != template_id:
        raise AgentLoadError(f"Agent template id '{agent_id}' does not match file name '{template_id}'")
    if not SLUG_RE.match(agent_id):
        raise AgentLoadError(f"Agent template id must match {SLUG_RE.pattern}")
    if len(prompt) > _MAX_PROMPT_CHARS:
        raise AgentLoadError(f"Agent template '{agent_id}': system_prompt too long")

    return AgentTemplate(
        id=agent_id,
        version=str(raw.get("version", "1.0.0")),
        name=str(raw.get("name", agent_id)),
        description=str(raw.get("description", "")),
        system_prompt=prompt.strip(),
        tools=_string_list(raw.get("tools"), field_name="tools", template_id=agent_id),
        keywords=_string_list(raw.get("keywords"), field_name="keywords", template_id=agent_id),
        rag_enabled=bool(raw.get("rag_enabled", False)),
    )


def list_template_ids() -> List[str]:
    """Discover template ids from switchboard/agents/*.yaml (filename stem = id). Returns sorted list."""
    if not TEMPLATES_DIR.exists():
        return []
    return sorted(p.stem for p in TEMPLATES_DIR.glob("*.yaml") if p.is_file())


def load_templates() -> List[AgentTemplate]:
    return [load_template(template_id) for template_id in list_template_ids()]
