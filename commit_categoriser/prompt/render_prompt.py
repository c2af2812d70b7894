"""Render prompt templates in commit_categoriser/prompt/promptFiles using pystache.

Templates pull in their partials by name. Partial files may be wrapped in a
code fence (```markdown ... ```); the fence is stripped before rendering.

Usage:
    python -m commit_categoriser.prompt.render_prompt [template_filename] [context.json]
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pystache

PROMPTS_DIR = Path(__file__).parent / "promptFiles"

DEFAULT_TEMPLATE = "commit_categoriser.md"

# Map of template to required partials
TEMPLATE_PARTIALS: dict[str, list[str]] = {
    "commit_categoriser.md": [
        "categoriser_system_prompt",
        "category_definitions",
        "output_format",
    ],
}


def _read_prompt(name: str) -> str:
    p = PROMPTS_DIR / name
    if not p.exists():
        raise FileNotFoundError(f"Prompt file not found: {p}")
    return p.read_text(encoding="utf-8")


def _strip_code_fences(s: str) -> str:
    """Strip a single leading and trailing code-fence line if present."""
    lines = s.splitlines()
    if not lines:
        return s
    if lines[0].lstrip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].lstrip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def render_template(
    template_name: str = DEFAULT_TEMPLATE,
    context: dict | None = None,
) -> str:
    template = _read_prompt(template_name)

    partials = {}
    for partial_name in TEMPLATE_PARTIALS.get(template_name, []):
        partials[partial_name] = _strip_code_fences(_read_prompt(f"{partial_name}.md"))

    renderer = pystache.Renderer(partials=partials, missing_tags="ignore")
    return renderer.render(template, context or {}).strip()


def _load_context(path: str) -> dict:
    return json.loads(Path(path).read_text(encoding="utf-8"))


if __name__ == "__main__":
    tpl = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_TEMPLATE
    ctx = None
    if len(sys.argv) > 2:
        ctx = _load_context(sys.argv[2])
    print(render_template(tpl, ctx))
