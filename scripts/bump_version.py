"""Set or bump the drivegate version in pyproject.toml and src/drivegate/__init__.py.

Usage:
    uv run python scripts/bump_version.py --patch          # 0.1.0 → 0.1.1
    uv run python scripts/bump_version.py --minor          # 0.1.1 → 0.2.0
    uv run python scripts/bump_version.py --set 1.0.0
    uv run python scripts/bump_version.py --minor --dry-run
"""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
TARGETS = {
    ROOT / "pyproject.toml": re.compile(r'^(version\s*=\s*")(\d+\.\d+\.\d+)(")', re.MULTILINE),
    ROOT / "src" / "drivegate" / "__init__.py": re.compile(
        r'^(__version__\s*=\s*")(\d+\.\d+\.\d+)(")', re.MULTILINE
    ),
}
SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+$")

Version = tuple[int, int, int]


def parse(version: str) -> Version:
    major, minor, patch = (int(p) for p in version.split("."))
    return major, minor, patch


def current_version() -> Version:
    path, pattern = next(iter(TARGETS.items()))
    match = pattern.search(path.read_text())
    if match is None:
        raise SystemExit(f"error: no version found in {path.name}")
    return parse(match.group(2))


def bump(version: Version, part: str) -> Version:
    major, minor, patch = version
    if part == "major":
        return major + 1, 0, 0
    if part == "minor":
        return major, minor + 1, 0
    return major, minor, patch + 1


def write_version(new: str, *, dry_run: bool) -> None:
    for path, pattern in TARGETS.items():
        text = path.read_text()
        if not pattern.search(text):
            print(f"warning: version not found in {path.name}, skipping", file=sys.stderr)
            continue
        if not dry_run:
            path.write_text(pattern.sub(rf"\g<1>{new}\3", text))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Set or bump the drivegate version")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--major", action="store_const", const="major", dest="part")
    group.add_argument("--minor", action="store_const", const="minor", dest="part")
    group.add_argument("--patch", action="store_const", const="patch", dest="part")
    group.add_argument("--set", dest="explicit", metavar="X.Y.Z")
    parser.add_argument("--dry-run", action="store_true", help="print the change only")
    args = parser.parse_args(argv)

    old = ".".join(map(str, current_version()))
    if args.explicit is not None:
        if not SEMVER_RE.match(args.explicit):
            parser.error(f"not a X.Y.Z version: {args.explicit}")
        new = args.explicit
    else:
        new = ".".join(map(str, bump(parse(old), args.part)))

    write_version(new, dry_run=args.dry_run)
    print(f"{old} → {new}" + (" (dry run)" if args.dry_run else ""))


if __name__ == "__main__":
    main()
