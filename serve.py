"""Run the session API with uvicorn.

Applies migrations and seeds the built-in templates first, so a fresh SQLite
file is usable straight away.

Run with:  python3 serve.py
"""

from __future__ import annotations

import os

import uvicorn

from db.seed import run_migrations, seed_templates

API_PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    run_migrations()
    seed_templates()

    from api.main import create_app

    uvicorn.run(create_app(), host=os.getenv("HOST", "127.0.0.1"), port=API_PORT, log_level="warning")


if __name__ == "__main__":
    main()
