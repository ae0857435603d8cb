"""Version metadata for ClipSync builds."""
from __future__ import annotations

import os
import re
from typing import Mapping, Optional

__all__ = ["__version__", "is_dev_build", "version_label", "DEV_MODE_ENV_VAR"]

__version__ = "1.2.0"
DEV_MODE_ENV_VAR = "CLIPSYNC_DEV_MODE"

# Matches "1.3.0-dev", "1.3.0.dev2", "dev-1.3" and "1.3+dev".
_DEV_MARKER = re.compile(r"(?:^|[.\-+])dev\d*(?:$|[.\-+])")


def _env_flag(name: str, environ: Optional[Mapping[str, str]] = None) -> Optional[bool]:
    env = os.environ if environ is None else environ
    raw = env.get(name)
    if raw is None:
        return None
    token = raw.strip().lower()
    if token in {"1", "true", "yes", "on"}:
        return True
    if token in {"0", "false", "no", "off"}:
        return False
    return None


def is_dev_build(version: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Return True when developer-only behaviour (forced DEBUG logging) should be on.

    ``CLIPSYNC_DEV_MODE`` wins when set to a recognised boolean; otherwise the
    version string decides.
    """

    override = _env_flag(DEV_MODE_ENV_VAR, environ)
    if override is not None:
        return override
    identifier = (version or __version__ or "").strip().lower()
    return bool(identifier) and _DEV_MARKER.search(identifier) is not None


def version_label(version: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> str:
    identifier = (version or __version__).strip()
    label = identifier if identifier.lower().startswith("v") else f"v{identifier}"
    if is_dev_build(identifier, environ):
        return f"{label} (dev)"
    return label
