#!/usr/bin/env python3
"""Move API keys from ``.env`` into the system keychain.

Every key listed in ``CREDENTIAL_KEYS`` that has a value in ``.env`` is
stored with ``keyring``. With ``--clean`` the stored keys are then
removed from ``.env``; comments and other settings are left alone.

Usage:
    python -m scripts.migrate_env_to_keychain
    python -m scripts.migrate_env_to_keychain --clean
"""

import argparse
import re
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import dotenv_values

from services.credential_manager import CREDENTIAL_KEYS, get_credential, set_credential


def migrate(env_path: Path, *, clean: bool = False) -> dict[str, list[str]]:
    """Store the credentials found in ``env_path`` in the keychain.

    Args:
        env_path: Path to the ``.env`` file.
        clean: Remove stored keys from ``env_path`` afterwards.

    Returns:
        Keys grouped by outcome: ``stored``, ``unchanged``, ``missing``
        and ``failed``.
    """
    if not env_path.exists():
        print(f"No .env file found at {env_path}")
        sys.exit(1)

    values = dotenv_values(env_path)
    outcome: dict[str, list[str]] = {"stored": [], "unchanged": [], "missing": [], "failed": []}

    for key in sorted(CREDENTIAL_KEYS):
        value = values.get(key)
        if not value:
            outcome["missing"].append(key)
        elif get_credential(key) == value:
            outcome["unchanged"].append(key)
        elif set_credential(key, value):
            outcome["stored"].append(key)
        else:
            outcome["failed"].append(key)

    for label, keys in outcome.items():
        if keys:
            print(f"{label:>9}: {', '.join(keys)}")

    in_keychain = outcome["stored"] + outcome["unchanged"]
    if clean and in_keychain:
        remove_keys_from_env(env_path, in_keychain)
    elif clean:
        print("Nothing to clean from .env.")
    return outcome


def remove_keys_from_env(env_path: Path, keys: list[str]) -> None:
    """Drop ``KEY=...`` lines for ``keys``, keeping everything else."""
    pattern = re.compile(r"^(" + "|".join(re.escape(k) for k in keys) + r")\s*=")
    lines = env_path.read_text().splitlines(keepends=True)
    env_path.write_text("".join(line for line in lines if not pattern.match(line)))
    print(f"Removed {len(keys)} key(s) from {env_path}")


def main():
    parser = argparse.ArgumentParser(description="Move API keys from .env to the keychain")
    parser.add_argument(
        "--clean",
        action="store_true",
        help="Remove stored keys from .env afterwards",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(__file__).parent.parent / ".env",
        help="Path to .env file (default: backend/.env)",
    )
    args = parser.parse_args()
    migrate(args.env_file, clean=args.clean)


if __name__ == "__main__":
    main()
