#!/usr/bin/env python3
"""Package layering validation script.

Enforces the import rules that keep the resilience core independent of its
adapters:

- types/ is the leaf layer: no imports from other kiosk_resilience packages
  and no third-party HTTP or process libraries
- core/ never imports the notification adapters or the CLI entry point
- core/supervisor/ talks to processes only, never to the network

Exit codes:
    0: No violations found (clean)
    1: Violations detected (layering rule broken)
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Final

# ANSI color codes for terminal output
RED: Final[str] = "\033[91m"
GREEN: Final[str] = "\033[92m"
YELLOW: Final[str] = "\033[93m"
RESET: Final[str] = "\033[0m"

IMPORT_LINE: Final[re.Pattern[str]] = re.compile(r"^\s*(?:from|import)\s+([\w.]+)")

# Directory (relative to the package) -> forbidden module prefixes
RULES: Final[dict[str, tuple[str, ...]]] = {
    "types": (
        "kiosk_resilience.core",
        "kiosk_resilience.notifications",
        "kiosk_resilience.utils",
        "kiosk_resilience.__main__",
        "aiohttp",
        "psutil",
    ),
    "core": (
        "kiosk_resilience.notifications",
        "kiosk_resilience.__main__",
    ),
    "core/supervisor": (
        "aiohttp",
        "kiosk_resilience.utils.http_client",
        "kiosk_resilience.core.feeds.transport",
        "kiosk_resilience.core.feeds.health",
        "kiosk_resilience.core.feeds.region",
    ),
}


def check_file(file_path: Path, forbidden: tuple[str, ...]) -> list[tuple[int, str]]:
    """Check a single Python file for forbidden imports.

    Returns:
        List of (line_number, violation_description) tuples.
    """
    violations: list[tuple[int, str]] = []

    try:
        lines = file_path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        print(f"{YELLOW}Warning: Could not read {file_path}: {e}{RESET}", file=sys.stderr)
        return violations

    for line_num, line in enumerate(lines, start=1):
        match = IMPORT_LINE.match(line)
        if match is None:
            continue
        module = match.group(1)
        for prefix in forbidden:
            if module == prefix or module.startswith(f"{prefix}."):
                violations.append((line_num, f"Forbidden import of {prefix}: {line.strip()}"))
                break

    return violations


def scan_directory(
    package_path: Path,
    directory: str,
    forbidden: tuple[str, ...],
) -> dict[Path, list[tuple[int, str]]]:
    dir_path = package_path / directory
    if not dir_path.exists():
        print(f"{YELLOW}Warning: Layer directory {dir_path} does not exist{RESET}", file=sys.stderr)
        return {}

    violations_by_file: dict[Path, list[tuple[int, str]]] = {}
    for py_file in dir_path.rglob("*.py"):
        if "__pycache__" in py_file.parts:
            continue
        file_violations = check_file(py_file, forbidden)
        if file_violations:
            violations_by_file.setdefault(py_file, []).extend(file_violations)
    return violations_by_file


def main() -> int:
    """Main entry point for the layering check.

    Returns:
        Exit code: 0 if no violations, 1 if violations found.
    """
    project_root = Path(__file__).parent.parent
    package_path = project_root / "src" / "kiosk_resilience"

    if not package_path.exists():
        print(f"{RED}Error: Could not find src/kiosk_resilience directory{RESET}", file=sys.stderr)
        return 1

    print(f"Checking import layering in {package_path}\n")

    all_violations: dict[Path, list[tuple[int, str]]] = {}
    for directory, forbidden in RULES.items():
        for file_path, violations in scan_directory(package_path, directory, forbidden).items():
            all_violations.setdefault(file_path, []).extend(violations)

    if not all_violations:
        print(f"{GREEN}✓ No layering violations found{RESET}")
        return 0

    total_violations = sum(len(v) for v in all_violations.values())
    print(f"{RED}✗ Found {total_violations} layering violations:{RESET}\n")

    for file_path, violations in sorted(all_violations.items()):
        try:
            rel_path = file_path.relative_to(project_root)
        except ValueError:
            rel_path = file_path

        print(f"{RED}{rel_path}{RESET}")
        for line_num, description in sorted(set(violations)):
            print(f"  {line_num}: {description}")
        print()

    print(f"{RED}Layering check failed!{RESET}")
    print("\nAdapters (notifications, CLI) depend on the core, never the other way round.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
