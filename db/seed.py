"""Database seeder: runs migrations and installs the built-in demo templates.

Demo templates are global (no gym) so every gym can start a session from them
without authoring its own template first.
"""
from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config
from sqlalchemy import select

from core.db import session_scope
from core.models import WorkoutTemplate
from core.services.templates import BUILTIN_TEMPLATES

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    cfg = Config("alembic.ini")
    command.upgrade(cfg, "head")


def seed_templates() -> int:
    """Insert missing built-in templates. Returns the number of rows added."""
    added = 0
    with session_scope() as s:
        existing = set(s.execute(select(WorkoutTemplate.id)).scalars())
        for template in BUILTIN_TEMPLATES:
            if template["id"] in existing:
                continue
            s.add(
                WorkoutTemplate(
                    id=template["id"],
                    gym_slug=None,
                    name=template["name"],
                    description=template.get("description"),
                    is_demo=True,
                    blocks=template["blocks"],
                )
            )
            added += 1
    logger.info("templates_seeded", extra={"added": added})
    return added


def main() -> None:
    run_migrations()
    added = seed_templates()
    print(f"Seeding complete ({added} templates added)")


if __name__ == "__main__":
    main()
