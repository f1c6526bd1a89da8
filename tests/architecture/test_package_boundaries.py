"""
Package boundaries and the flush-only service contract.

1. crate_kernel/** may NOT import crate_config or scripts.  Settings reach
   the kernel only through crate_config.bridges.
2. Services and selectors never commit or roll back the session; the
   TransactionCoordinator owns the transaction boundary.
3. Only domain/clock.py reads the wall clock.

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
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _session_calls(path: Path, method: str) -> list[int]:
    """Lines calling <...>session.<method>()."""
    tree = ast.parse(path.read_text(), filename=str(path))
    lines = []
    for node in ast.walk(tree):
        if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute)):
            continue
        if node.func.attr != method:
            continue
        receiver = node.func.value
        name = receiver.attr if isinstance(receiver, ast.Attribute) else getattr(receiver, "id", "")
        if name == "session":
            lines.append(node.lineno)
    return lines


class TestKernelNoUpwardDependencies:

    FORBIDDEN_PREFIXES = ("crate_config", "scripts")

    def test_kernel_does_not_import_forbidden_packages(self):
        violations = []
        for path in _python_files("crate_kernel"):
            for lineno, module in _extract_imports(path):
                for prefix in self.FORBIDDEN_PREFIXES:
                    if module == prefix or module.startswith(f"{prefix}."):
                        violations.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")

        assert not violations, (
            "crate_kernel/** must not import upward packages:\n" + "\n".join(violations)
        )


class TestFlushOnlyServices:

    OWNER = "transaction_coordinator.py"

    def test_services_and_selectors_never_commit(self):
        violations = []
        for package in ("crate_kernel/services", "crate_kernel/selectors"):
            for path in _python_files(package):
                if path.name == self.OWNER:
                    continue
                for method in ("commit", "rollback"):
                    for lineno in _session_calls(path, method):
                        violations.append(f"  {path.relative_to(ROOT)}:{lineno} session.{method}()")

        assert not violations, "\n".join(violations)

    def test_coordinator_owns_commit(self):
        path = ROOT / "crate_kernel" / "services" / self.OWNER
        assert _session_calls(path, "commit")


class TestClockDiscipline:

    def test_no_direct_wall_clock_reads(self):
        violations = []
        for path in _python_files("crate_kernel"):
            if path.name == "clock.py":
                continue
            tree = ast.parse(path.read_text(), filename=str(path))
            for node in ast.walk(tree):
                if (
                    isinstance(node, ast.Call)
                    and isinstance(node.func, ast.Attribute)
                    and node.func.attr in ("now", "utcnow")
                    and isinstance(node.func.value, ast.Name)
                    and node.func.value.id == "datetime"
                ):
                    violations.append(f"  {path.relative_to(ROOT)}:{node.lineno}")

        assert not violations, "datetime.now() outside domain/clock.py:\n" + "\n".join(violations)
