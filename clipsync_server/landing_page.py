"""Landing page template loading and endpoint substitution."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from clipsync_server.errors import TemplateMissing

TEMPLATE_PLACEHOLDER = "const targetUrl = '';"
DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parent / "web" / "index.html"


def render_template(template: str, target_url: str) -> str:
    """Substitute ``target_url`` into the ``targetUrl`` placeholder."""

    return template.replace(TEMPLATE_PLACEHOLDER, f"const targetUrl = '{target_url}';")


class LandingPage:
    """Reads the HTML template from disk on every render so edits show up live."""

    def __init__(self, template_path: Optional[Path] = None) -> None:
        self.template_path = template_path or DEFAULT_TEMPLATE_PATH

    def render(self, target_url: str) -> str:
        try:
            template = self.template_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateMissing(f"Unable to read landing page {self.template_path}: {exc}") from exc
        return render_template(template, target_url)
