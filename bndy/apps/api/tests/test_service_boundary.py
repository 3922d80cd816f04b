"""The authentication package must not depend on the membership package."""

import ast
from pathlib import Path

import bndy_api

PACKAGE_ROOT = Path(bndy_api.__file__).resolve().parent


def _imported_modules(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    modules = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            modules.add(node.module)
    return modules


def test_auth_never_imports_memberships():
    offenders = {
        path.name: sorted(m for m in _imported_modules(path) if m.startswith("bndy_api.memberships"))
        for path in (PACKAGE_ROOT / "auth").glob("*.py")
    }

    assert {name: mods for name, mods in offenders.items() if mods} == {}


def test_me_router_never_imports_memberships():
    modules = _imported_modules(PACKAGE_ROOT / "routers" / "me.py")

    assert not [m for m in modules if m.startswith("bndy_api.memberships")]
