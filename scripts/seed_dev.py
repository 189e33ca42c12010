#!/usr/bin/env python
"""Seed development database with providers and models.

Seeds the development database with the default provider rows and a few
models per provider so the chat UI has something to select.

Constraints:
- Refuses to run in staging or prod (CHATFOUNDRY_ENV check)
- Idempotent: rows are matched by slug and never duplicated
- Creates missing tables for SQLite URLs; PostgreSQL is migrated with alembic
- Never runs automatically (manual invocation only)

Usage:
    DATABASE_URL=... python scripts/seed_dev.py
"""

import os
import sys

PROVIDERS = [
    {"slug": "openai", "name": "OpenAI"},
    {"slug": "anthropic", "name": "Anthropic"},
    {
        "slug": "azure_openai",
        "name": "Azure OpenAI",
        "api_version": "2024-10-21",
        "details": {"azure_openai_resource_name": "chatfoundry"},
    },
    {"slug": "cloudflare", "name": "Cloudflare Workers AI", "auth_type": "none"},
]

MODELS = [
    {"slug": "gpt-4.1-mini", "name": "GPT-4.1 mini", "provider": "openai"},
    {"slug": "gpt-4.1", "name": "GPT-4.1", "provider": "openai"},
    {"slug": "claude-3-5-haiku-latest", "name": "Claude 3.5 Haiku", "provider": "anthropic"},
    {
        "slug": "@cf/deepseek-ai/deepseek-r1-distill-qwen-32b",
        "name": "DeepSeek R1 Distill Qwen 32B",
        "provider": "cloudflare",
        "has_reasoning": True,
    },
    {
        "slug": "@cf/meta/llama-3.1-8b-instruct",
        "name": "Llama 3.1 8B Instruct",
        "provider": "cloudflare",
    },
]


def main():
    # 1. Environment check (hard fail in staging/prod)
    env = os.getenv("CHATFOUNDRY_ENV", "local")
    if env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in CHATFOUNDRY_ENV={env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from sqlalchemy import select

    from chatfoundry.db import Base, Model, Provider, create_db_engine, create_session_factory

    engine = create_db_engine(database_url)
    if database_url.startswith("sqlite"):
        Base.metadata.create_all(engine)

    created: list[str] = []
    with create_session_factory(engine)() as db:
        # 3. Providers
        providers: dict[str, Provider] = {}
        for row in PROVIDERS:
            provider = db.scalar(select(Provider).where(Provider.slug == row["slug"]))
            if provider is None:
                provider = Provider(**row)
                db.add(provider)
                created.append(f"provider {row['slug']}")
            providers[row["slug"]] = provider
        db.flush()

        # 4. Models
        for row in MODELS:
            fields = dict(row)
            provider = providers[fields.pop("provider")]
            if db.scalar(select(Model).where(Model.slug == fields["slug"])) is None:
                db.add(Model(provider_id=provider.id, **fields))
                created.append(f"model {fields['slug']}")

        db.commit()

    # 5. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"CHATFOUNDRY_ENV: {env}")
    print()
    for line in created:
        print(f"✓ Created: {line}")
    if not created:
        print("• Exists: all providers and models")


if __name__ == "__main__":
    main()
