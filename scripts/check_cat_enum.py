from __future__ import annotations

import ast
import sys
from pathlib import Path

DEFAULT_ROOT = Path("src/form_bldr")


def _load_cat_members(inst_path: Path) -> set[str]:
    mod = ast.parse(inst_path.read_text(encoding="utf-8"))
    for node in mod.body:
        if isinstance(node, ast.ClassDef) and node.name == "Cat":
            return {
                stmt.targets[0].id
                for stmt in node.body
                if isinstance(stmt, ast.Assign)
                and len(stmt.targets) == 1
                and isinstance(stmt.targets[0], ast.Name)
            }
    return set()


def _find_cat_usage(root: Path) -> dict[str, list[tuple[Path, int]]]:
    used: dict[str, list[tuple[Path, int]]] = {}
    for path in sorted(root.rglob("*.py")):
        mod = ast.parse(path.read_text(encoding="utf-8"))
        for node in ast.walk(mod):
            if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name) and node.value.id == "Cat":
                used.setdefault(node.attr, []).append((path, node.lineno))
    return used


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    root = Path(args[0]) if args else DEFAULT_ROOT
    inst_path = root / "instrumentation.py"

    if not inst_path.exists():
        print(f"ERROR: instrumentation.py not found at {inst_path}")
        return 2

    cat_members = _load_cat_members(inst_path)
    used = _find_cat_usage(root)
    missing = sorted(name for name in used if name not in cat_members)

    if not missing:
        print("OK: All Cat.* references are present in the Cat enum.")
        return 0

    print("ERROR: Missing Cat enum entries:")
    for name in missing:
        for path, line in used[name]:
            print(f"  {name}: {path}:{line}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
