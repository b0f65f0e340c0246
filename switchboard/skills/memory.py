"""Per-user notes about customers, products and suppliers."""

from __future__ import annotations

from typing import Any, Dict

from ..storage import memory_store
from .types import Result, Skill, SkillContext


async def _recall_memory(params: Dict[str, Any], context: SkillContext) -> Result:
    notes = memory_store.recall_notes(context.tenant_id, context.user_id, params["entity_name"])
    if notes:
        summary = f"{len(notes)} notas guardadas sobre {params['entity_name']}."
    else:
        summary = f"No hay notas sobre {params['entity_name']}."
    return Result.ok(
        {
            "summary": summary,
            "found": bool(notes),
            "notes": [
                {"entity_name": n["entity_name"], "entity_type": n["entity_type"], "content": n["content"]}
                for n in notes
            ],
        }
    )


recall_memory = Skill(
    name="recall_memory",
    description=(
        "Busca notas que el usuario guardó antes sobre un cliente, producto o proveedor.\n"
        "USAR ANTES de responder sobre una entidad nombrada, para sumar lo que el usuario ya sabe. "
        'También para "qué anoté de X", "qué sabemos de X".'
    ),
    tool="memory",
    input_schema={
        "type": "object",
        "properties": {
            "entity_name": {"type": "string", "minLength": 1, "description": "Nombre (o parte) de la entidad"},
        },
        "required": ["entity_name"],
        "additionalProperties": False,
    },
    execute=_recall_memory,
    tags=["memory", "notes"],
    priority=5,
    integration=None,
)


async def _save_memory(params: Dict[str, Any], context: SkillContext) -> Result:
    name = params["entity_name"].strip()
    memory_store.save_note(
        context.tenant_id,
        context.user_id,
        name,
        params["content"],
        params["entity_type"],
    )
    return Result.ok({"saved": True, "message": f"Anotado sobre {name} ✅"})


save_memory = Skill(
    name="save_memory",
    description=(
        "Guarda una nota breve del usuario sobre un cliente, producto o proveedor para recordarla después.\n"
        'USAR SOLO cuando el usuario pide recordar algo: "anotá que X paga a 60 días", "acordate que...".'
    ),
    tool="memory",
    input_schema={
        "type": "object",
        "properties": {
            "entity_name": {"type": "string", "minLength": 1},
            "entity_type": {
                "type": "string",
                "enum": list(memory_store.ENTITY_TYPES),
                "default": "general",
            },
            "content": {"type": "string", "minLength": 1, "maxLength": memory_store.MAX_NOTE_CHARS},
        },
        "required": ["entity_name", "content"],
        "additionalProperties": False,
    },
    execute=_save_memory,
    tags=["memory", "notes"],
    priority=4,
    integration=None,
)


SKILLS = [recall_memory, save_memory]
