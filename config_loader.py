"""
config_loader.py — Unified configuration loader
================================================
Merges config.tech.yaml (shipped defaults) and config.local.yaml
(deployment overrides, not committed) into a single dict, so all code can
call load_config() and get the combined result transparently.

Precedence: config.local.yaml values overwrite config.tech.yaml values
on top-level key collision.

Secrets never live in YAML. They are read from the environment, which is
populated from a .env file in the project root when one exists.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv


def load_config(root: Path | str | None = None) -> dict:
    """
    Load and merge config.tech.yaml + config.local.yaml.

    Args:
        root: Project root directory. Defaults to the directory containing
              this file (i.e. the project root).

    Returns:
        Merged configuration dict.
    """
    if root is None:
        root = Path(__file__).parent
    root = Path(root)

    env_file = root / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    merged: dict = {}
    for name in ("config.tech.yaml", "config.local.yaml"):
        path = root / name
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}
            merged.update(data)

    return merged


def get_secret(name: str, default: str = "") -> str:
    """Read a secret from the environment (``.env`` already loaded)."""
    return os.getenv(name, default).strip()
