from __future__ import annotations

import ast
from pathlib import Path

RECONCILIATION_MODULES = (
    "checks.py",
    "commands.py",
    "completion.py",
    "db.py",
    "events.py",
    "models.py",
    "signature.py",
)


def _imported_names(path: Path) -> list[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    names: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            names.append(node.module or "")
    return names


def test_reconcilers_only_depend_on_connector_contracts() -> None:
    forbidden = (
        "requests",
        "uvicorn",
        "typer",
        "jose",
        "cla_bot.server.app",
        "cla_bot.server.github_connector_api",
        "cla_bot.server.agreement_connector_api",
        "cla_bot.server.github_connector_inmemory",
        "cla_bot.server.agreement_connector_inmemory",
    )
    server = Path("cla_bot/server")
    for module in RECONCILIATION_MODULES:
        path = server / module
        for name in _imported_names(path):
            assert not any(
                name == token or name.startswith(f"{token}.") for token in forbidden
            ), f"{path} imports forbidden dependency: {name}"
