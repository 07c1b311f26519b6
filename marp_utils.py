"""Marp deck markup and rendering through the Marp CLI."""
from __future__ import annotations

import html
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

try:
    from .markdown_utils import LineState, scan_lines
    from .models import Artifact, Template
    from .pipeline_common import RenderError
except Exception:
    from markdown_utils import LineState, scan_lines
    from models import Artifact, Template
    from pipeline_common import RenderError

LEAD_CLASS = "<!-- _class: lead -->"
IMAGE_RE = re.compile(r"!\[(.*?)\]\((.*?)\)")

TABLE_STYLE = """\
  table {
    border-collapse: collapse;
    margin: 1em auto;
    width: 90%;
    max-width: 1000px;
    font-size: 0.9em;
  }
  th, td {
    border: 1px solid #ddd;
    padding: 12px 15px;
    text-align: left;
  }
  th {
    font-weight: bold;
    border-bottom: 2px solid #ddd;
  }
  .r-plot, .r-table {
    text-align: center;
    overflow: auto;
    max-height: 70vh;
  }"""


def build_directives(template: Template) -> str:
    """Front matter and theme CSS for ``template``.

    Args:
        template (Template):

    Returns:
        str:
    """
    return f"""---
marp: true
theme: {template.theme}
paginate: true
style: |
  section {{
    background-color: {template.background_color};
    color: {template.text_color};
    font-family: {template.body_font};
  }}
  section h1, section h2, section h3 {{
    color: {template.accent_color};
    font-family: {template.heading_font};
  }}
  section.lead {{
    display: flex;
    flex-direction: column;
    justify-content: center;
    text-align: center;
  }}
  section a {{
    color: {template.accent_color};
  }}
{TABLE_STYLE}
---"""


def _background_image(m: re.Match) -> str:
    alt, src = m.group(1), m.group(2)
    low = alt.lower()
    if "background" in low and not low.startswith("bg"):
        return f"![bg {'cover' if 'cover' in low else 'contain'}]({src})"
    return m.group(0)


def apply_template_markup(markdown: str) -> str:
    """Add lead classes to title slides and Marp background-image syntax.

    Args:
        markdown (str):

    Returns:
        str:
    """
    out: List[str] = []
    for sl in scan_lines(markdown):
        if sl.state is not LineState.PROSE:
            out.append(sl.text)
            continue
        line = IMAGE_RE.sub(_background_image, sl.text)
        if line.startswith("# "):
            prev = next((x for x in reversed(out) if x.strip()), "")
            if prev.strip() != LEAD_CLASS:
                out.append(LEAD_CLASS)
        out.append(line)
    return "\n".join(out)


def artifact_markup(artifact: Artifact, alt_text: str = "R Plot") -> str:
    """Markup embedding an artifact in a slide.

    Args:
        artifact (Artifact):
        alt_text (str):

    Returns:
        str:
    """
    if artifact.mime_type == "image/svg+xml":
        return (
            '<div class="r-plot">\n'
            f'  <img src="{artifact.data_url()}" alt="{html.escape(alt_text, quote=True)}" '
            'style="max-width: 100%; max-height: 70vh;" />\n'
            "</div>"
        )
    if artifact.mime_type == "text/html":
        return f'<div class="r-table">\n{artifact.text.strip()}\n</div>'
    return f"```text\n{artifact.text.rstrip()}\n```"


class MarpRenderer:
    """Renders deck markdown to HTML with the Marp CLI."""

    def __init__(self, command: Optional[str] = None, timeout: float = 120.0) -> None:
        self.command = command
        self.timeout = timeout

    def _command(self) -> List[str]:
        if self.command:
            return self.command.split()
        if shutil.which("marp"):
            return ["marp"]
        if shutil.which("npx"):
            return ["npx", "--yes", "@marp-team/marp-cli"]
        raise RenderError(
            "Marp CLI not found. Install with: `npm install -g @marp-team/marp-cli` "
            "or set TOPIC2DECK_MARP to the command to run."
        )

    def render(self, markdown: str) -> str:
        """Render.

        Args:
            markdown (str):

        Returns:
            str: HTML document.
        """
        cmd = self._command()
        with tempfile.TemporaryDirectory(prefix="topic2deck_marp_") as tmp:
            md_path = Path(tmp) / "deck.md"
            html_path = Path(tmp) / "deck.html"
            md_path.write_text(markdown, encoding="utf-8")
            full = cmd + ["--html", "--allow-local-files", str(md_path), "-o", str(html_path)]
            try:
                r = subprocess.run(full, capture_output=True, text=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                raise RenderError(f"Marp did not finish within {self.timeout:g}s") from exc
            except OSError as exc:
                raise RenderError(f"Could not start Marp: {exc}") from exc
            if r.returncode != 0:
                raise RenderError("Marp failed. Tail:\n" + ((r.stdout or "") + "\n" + (r.stderr or ""))[-2000:])
            if not html_path.exists():
                raise RenderError("Marp produced no output")
            return html_path.read_text(encoding="utf-8")
