from pathlib import Path

import pytest
import yaml

from switchboard import agent_loader
from switchboard.skills import get_registry

TEMPLATE_IDS = [
    "tuqui",
    "tuqui-contador",
    "tuqui-erp",
    "tuqui-legal",
    "tuqui-mercado",
]


def load_template_yaml(template_id: str) -> dict:
    """Helper to load an agent template YAML by id from switchboard/agents (package data)."""
    templates_dir = Path(__file__).parent.parent / "switchboard" / "agents"
    template_path = templates_dir / f"{template_id}.yaml"
    assert template_path.exists(), f"Template file not found: {template_path}"

    with template_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    assert isinstance(data, dict), "Template YAML must deserialize to a mapping"
    return data


def test_template_ids_are_discovered():
    assert agent_loader.list_template_ids() == TEMPLATE_IDS


def test_all_templates_have_required_fields():
    """
    Each template YAML must expose the agent contract fields.

    Required top-level keys:
    - id
    - version
    - name
    - description
    - system_prompt
    - keywords
    """
    for template_id in TEMPLATE_IDS:
        template = load_template_yaml(template_id)

        for key in ["id", "version", "name", "description", "system_prompt", "keywords"]:
            assert key in template, f"Template '{template_id}' missing required field '{key}'"

        assert template["id"] == template_id, "Template id must match filename"


def test_template_tools_are_known_skills():
    registry = get_registry()
    for template in agent_loader.load_templates():
        for entry in template.tools:
            assert registry.is_known(entry), f"{template.id}: unknown tool '{entry}'"


def test_general_agent_has_no_keywords_and_specialists_do():
    templates = {t.id: t for t in agent_loader.load_templates()}
    assert templates["tuqui"].keywords == []
    for template_id in TEMPLATE_IDS[1:]:
        assert templates[template_id].keywords, f"{template_id} needs routing keywords"
        assert all(k == k.lower() for k in templates[template_id].keywords)


def test_to_definition_marks_template_origin():
    definition = agent_loader.load_template("tuqui-erp").to_definition()
    assert definition.slug == "tuqui-erp"
    assert definition.template_origin_id == "tuqui-erp"
    assert definition.is_template_derived
    assert definition.tool_names == ["erp"]
    assert "{{CURRENT_DATE}}" in definition.system_prompt


def test_missing_template_raises():
    with pytest.raises(agent_loader.AgentLoadError):
        agent_loader.load_template("tuqui-inexistente")
