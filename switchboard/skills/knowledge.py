"""Knowledge-base search over the tenant's stored documents."""

from __future__ import annotations

from typing import Any, Dict

from ..storage import document_store
from .types import Result, Skill, SkillContext


async def _search_knowledge_base(params: Dict[str, Any], context: SkillContext) -> Result:
    matches = document_store.search_documents(context.tenant_id, context.agent_slug, params["query"])
    if matches:
        titles = list(dict.fromkeys(m["title"] for m in matches))
        summary = f"{len(matches)} pasajes relevantes en: {', '.join(titles)}."
    else:
        summary = f"No hay documentos que mencionen '{params['query']}'."
    return Result.ok(
        {
            "summary": summary,
            "found": bool(matches),
            "count": len(matches),
            "documents": [
                {
                    "title": m["title"],
                    "content": m["content"],
                    "relevance": f"{round(m['similarity'] * 100)}%",
                }
                for m in matches
            ],
        }
    )


search_knowledge_base = Skill(
    name="search_knowledge_base",
    description=(
        "Busca en los documentos cargados por la empresa (manuales, políticas, procedimientos, "
        "listas de precios) los pasajes más relevantes para la consulta.\n"
        'USAR PARA: "qué dice el manual sobre...", "cuál es la política de...", preguntas sobre '
        "procedimientos internos. NO usar para datos del ERP."
    ),
    tool="rag",
    input_schema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "minLength": 1, "description": "Qué buscar, en palabras clave"},
        },
        "required": ["query"],
        "additionalProperties": False,
    },
    execute=_search_knowledge_base,
    tags=["knowledge", "documents"],
    priority=5,
    integration=None,
)


SKILLS = [search_knowledge_base]
