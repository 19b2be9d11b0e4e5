"""
Environment files for local runs of userctl.

Production invocations (`ENVIRONMENT` unset or `prod`) read nothing. Elsewhere
`.env` and then `.env.local` from the working directory are applied, the latter
overriding. `USERCTL_ENV_FILE` names one extra file applied last.

Must not import `userctl.config.config`; it runs before configuration loads.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv


def is_production() -> bool:
    return (os.getenv("ENVIRONMENT") or "prod").strip().lower() == "prod"


def load_dotenv_files(*, base_dir: Path | None = None) -> List[Path]:
    """
    Apply environment files for dev/test invocations.

    Args:
        base_dir: Directory holding `.env` / `.env.local` (defaults to cwd)

    Returns:
        The files that were applied, in order
    """
    if is_production():
        return []

    base = base_dir or Path.cwd()
    candidates = [(base / ".env", False), (base / ".env.local", True)]
    extra = os.getenv("USERCTL_ENV_FILE")
    if extra:
        candidates.append((Path(extra), True))

    applied = []
    for path, override in candidates:
        if path.is_file():
            load_dotenv(dotenv_path=path, override=override)
            applied.append(path)
    return applied
