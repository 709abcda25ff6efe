"""
Layer boundaries, checked by reading the source with ``ast``.

1. procurement_kernel/** imports none of the other packages.  The kernel
   never depends upward.
2. procurement_modules/** (pure models, workflows, display) does not import
   procurement_services or procurement_config.
3. procurement_config/** imports only the kernel.
4. Only the SQL store and the kernel's db package touch SQLAlchemy.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


def test_packages_exist():
    for package in ("procurement_kernel", "procurement_modules", "procurement_config", "procurement_services"):
        assert _python_files(package), f"{package} has no source files"


def test_kernel_has_no_upward_dependencies():
    violations = _violations(
        "procurement_kernel",
        ("procurement_services", "procurement_config", "procurement_modules"),
    )
    assert not violations, "Kernel boundary violation:\n" + "\n".join(violations)


def test_modules_do_not_import_services():
    violations = _violations("procurement_modules", ("procurement_services", "procurement_config"))
    assert not violations, "Module boundary violation:\n" + "\n".join(violations)


def test_config_depends_only_on_kernel():
    violations = _violations("procurement_config", ("procurement_services", "procurement_modules"))
    assert not violations, "Config boundary violation:\n" + "\n".join(violations)


def test_sqlalchemy_is_confined_to_persistence():
    allowed = {ROOT / "procurement_services" / "sql_store.py"}
    allowed.update(_python_files("procurement_kernel/db"))
    allowed.update(_python_files("procurement_kernel/models"))

    offenders = []
    for package in ("procurement_kernel", "procurement_modules", "procurement_services", "procurement_config"):
        for path in _python_files(package):
            if path in allowed:
                continue
            for lineno, module in _extract_imports(path):
                if module == "sqlalchemy" or module.startswith("sqlalchemy."):
                    offenders.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    assert not offenders, "SQLAlchemy outside the persistence layer:\n" + "\n".join(offenders)
