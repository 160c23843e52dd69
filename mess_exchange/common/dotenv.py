from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Optional

ENV_PREFIX = "MESS_"


def _parse_line(raw: str) -> Optional[tuple[str, str]]:
    line = raw.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):].strip()
    if "=" not in line:
        return None
    key, value = (part.strip() for part in line.split("=", 1))
    if not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


def load_dotenv(
    path: str | Path,
    *,
    override: bool = False,
    allow_prefixes: Iterable[str] = (ENV_PREFIX,),
) -> bool:
    """Load `KEY=VALUE` lines from a .env file into os.environ.

    Only keys starting with one of `allow_prefixes` are loaded; existing
    variables win unless `override` is set. Returns False if the file is missing.
    """
    p = Path(path)
    if not p.is_file():
        return False

    prefixes = tuple(allow_prefixes)
    for raw in p.read_text(encoding="utf-8").splitlines():
        parsed = _parse_line(raw)
        if parsed is None:
            continue
        key, value = parsed
        if prefixes and not key.startswith(prefixes):
            continue
        if not override and key in os.environ:
            continue
        os.environ[key] = value
    return True


def load_dotenv_auto(*, env_file: Optional[str] = None, override: bool = False) -> Optional[Path]:
    """Try MESS_ENV_FILE / `env_file`, then ./.env. Returns the loaded path, if any."""
    explicit = os.getenv("MESS_ENV_FILE") or env_file
    candidates = [Path(explicit)] if explicit else []
    candidates.append(Path.cwd() / ".env")
    for candidate in candidates:
        if load_dotenv(candidate, override=override):
            return candidate
    return None
