"""CLI entry point for the agent-switchboard package."""

from __future__ import annotations

import os
import platform
import shutil
import sys

# OpenRouter: one API key for many models (OpenAI, Claude, Gemini, etc.)
OPENROUTER_KEYS_URL = "https://openrouter.ai/keys"
MIN_PYTHON = (3, 10)


def _print_setup_banner(
    default_agent: str,
    provider: str,
    port: int,
    *,
    for_startup: bool = True,
) -> None:
    """Print setup/LLM instructions. If for_startup, show 'switchboard started' line; else show 'Setup' header."""
    provider_note = "no API key required" if provider == "stub" else "API key from .env"
    base = f"http://localhost:{port}"
    print()
    if for_startup:
        print("✅ Switchboard started — default agent: {}".format(default_agent))
        print("Provider: {} ({})".format(provider, provider_note))
    else:
        print("Agent Switchboard — Setup")
        print("Default agent: {}  |  Provider: {} ({})".format(default_agent, provider, provider_note))
    print()
    print("Docs:   {}/docs".format(base))
    print("Chat:   POST {}/chat  (header X-Tenant-Id)".format(base))
    print("Agents: {}/agents".format(base))
    print()
    print("────────────────────────────────────────────")
    print("Get an API key from OpenRouter (one key for many models):")
    print("   {}".format(OPENROUTER_KEYS_URL))
    print()
    print("Copy the block below into .env and replace YOUR_KEY_HERE with your key.")
    print()
    print("   PROVIDER=openrouter")
    print("   OPENROUTER_API_KEY=YOUR_KEY_HERE")
    print("   OPENROUTER_MODEL=openai/gpt-4o-mini")
    print("   DB_PATH=./data/switchboard.db")
    print("   AUTH_TOKEN=choose-a-token")
    print()
    print("Then restart: stop the server (Ctrl+C) and run switchboard again.")
    print()


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _print_help() -> None:
    print("Agent Switchboard CLI")
    print()
    print("Usage:")
    print("  switchboard                 Start the server")
    print("  switchboard serve           Start the server")
    print("  switchboard setup           Print setup/env guidance")
    print("  switchboard doctor          Print environment diagnostics")
    print('  switchboard route "<text>"  Show the keyword routing decision for a message')
    print()


def _print_doctor() -> None:
    from .agent_loader import AgentLoadError, load_templates
    from .config import get_settings
    from .skills import get_registry
    from .storage.db import get_db_info

    settings = get_settings()
    print("Agent Switchboard Doctor")
    print()
    print(f"Platform: {platform.platform()}")
    print(f"Python:   {_python_version_str()}")
    print(f"In venv:  {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin: {shutil.which('switchboard') or 'not found'}")
    print(f"Provider: {settings.provider_name} (model: {settings.model_id or 'n/a'})")
    db = get_db_info()
    print(f"Database: {db.dialect} ({'DATABASE_URL' if db.database_url else db.db_path})")
    print(f"Auth:     {'AUTH_TOKEN' if settings.auth_token else 'JWT' if settings.jwt_secret else 'disabled'}")
    try:
        templates = load_templates()
        print(f"Agents:   {', '.join(t.id for t in templates)}")
    except AgentLoadError as exc:
        print(f"Issue: agent templates failed to load ({exc})")
    print(f"Skills:   {len(get_registry())}")
    if sys.version_info < MIN_PYTHON:
        print(f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}.")
    if settings.provider_name != "stub" and settings.model_id is None:
        print("Issue: provider configured without a model id.")


def _print_route(message: str) -> None:
    """Tier-1 decision against the built-in templates. No model call."""
    from .agent_loader import load_templates
    from .config import get_settings
    from .router import score_keywords, tier_one

    agents = [t.to_definition() for t in load_templates()]
    settings = get_settings()
    for slug, score, matched in score_keywords(message, agents):
        if score:
            print(f"  {slug}: {score} ({', '.join(matched)})")
    decision = tier_one(message, agents, margin=settings.router_margin)
    if decision is None:
        print(f"agent={settings.default_agent_slug} confidence=low reason=ambiguous (would ask the classifier)")
    else:
        print(f"agent={decision.agent_slug} confidence={decision.confidence} reason={decision.reason}")


def main() -> None:
    """Run the switchboard server or handle setup/doctor/route commands."""
    from .config import get_settings

    port = int(os.environ.get("PORT", "4280"))
    host = os.environ.get("HOST", "0.0.0.0")
    settings = get_settings()

    if len(sys.argv) > 1:
        subcommand = sys.argv[1].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "setup":
            _print_setup_banner(
                default_agent=settings.default_agent_slug,
                provider=settings.provider_name,
                port=port,
                for_startup=False,
            )
            sys.exit(0)
        if subcommand == "doctor":
            _print_doctor()
            sys.exit(0)
        if subcommand == "route":
            if len(sys.argv) < 3:
                print('Usage: switchboard route "<message>"', file=sys.stderr)
                sys.exit(2)
            _print_route(" ".join(sys.argv[2:]))
            sys.exit(0)
        if subcommand != "serve":
            _print_help()
            sys.exit(2)

    import uvicorn

    _print_setup_banner(
        default_agent=settings.default_agent_slug,
        provider=settings.provider_name,
        port=port,
        for_startup=True,
    )

    uvicorn.run(
        "switchboard.main:app",
        host=host,
        port=port,
        factory=False,
    )


if __name__ == "__main__":
    main()
    sys.exit(0)
