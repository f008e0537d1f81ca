#!/usr/bin/env python3
"""Verify Hopfield TSP dependencies are correctly installed."""

import sys
from importlib import metadata
from typing import Dict, Tuple

# distribution name -> (minimum version, required)
DEPENDENCIES: Dict[str, Tuple[str, bool]] = {
    "numpy": ("1.21.0", True),
    "scipy": ("1.7.0", True),
    "pandas": ("1.3.0", True),
    "matplotlib": ("3.5.0", True),
    "pytest": ("7.0.0", False),
}


def version_tuple(version: str) -> Tuple[int, ...]:
    """Leading numeric release segment, e.g. '2.1.0rc1' -> (2, 1, 0)."""
    parts = []
    for piece in version.split("."):
        digits = ""
        for ch in piece:
            if not ch.isdigit():
                break
            digits += ch
        if not digits:
            break
        parts.append(int(digits))
        if len(digits) != len(piece):
            break
    return tuple(parts)


def check_dependency(dist_name: str, min_version: str, required: bool = True) -> bool:
    """Report one distribution; only a missing or outdated required one fails."""
    try:
        installed = metadata.version(dist_name)
    except metadata.PackageNotFoundError:
        if required:
            print(f"❌ {dist_name} not installed (REQUIRED)")
            return False
        print(f"⚠️  {dist_name} not installed (only needed for the test suite)")
        return True

    if version_tuple(installed) < version_tuple(min_version):
        print(f"❌ {dist_name} {installed} < required {min_version}")
        return not required

    print(f"✅ {dist_name} {installed} >= {min_version}")
    return True


def main() -> int:
    print("Hopfield TSP Dependency Verification")
    print("=" * 50)

    results = [check_dependency(name, *pin) for name, pin in DEPENDENCIES.items()]

    print("=" * 50)
    if all(results):
        print("✅ All required dependencies satisfied")
        return 0
    print("❌ Missing required dependencies")
    print("\nInstall with: pip install -e .[test]")
    return 1


if __name__ == "__main__":
    sys.exit(main())
