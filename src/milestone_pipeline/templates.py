"""Load prompt templates and substitute `{{VARIABLE}}` placeholders."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

from loguru import logger

from .errors import TemplateError

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
TEMPLATE_SUFFIX = ".md"

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Z][A-Z0-9_]*)\s*\}\}")


class TemplateRenderer(Protocol):
    def render(self, name: str, variables: Mapping[str, str]) -> str: ...


class TemplateLoader:
    """Resolve templates from project overrides first, then the packaged defaults."""

    def __init__(self, search_dirs: Optional[Sequence[Path]] = None) -> None:
        dirs = list(search_dirs or [])
        if BUILTIN_TEMPLATES_DIR not in dirs:
            dirs.append(BUILTIN_TEMPLATES_DIR)
        self.search_dirs = dirs

    def find(self, name: str) -> Path:
        relative = Path(name)
        if relative.is_absolute() or ".." in relative.parts:
            raise TemplateError(f"Invalid template name: {name}")
        filename = relative if relative.suffix else relative.with_suffix(TEMPLATE_SUFFIX)
        for directory in self.search_dirs:
            candidate = directory / filename
            if candidate.is_file():
                return candidate
        searched = ", ".join(str(d) for d in self.search_dirs)
        raise TemplateError(f"Template not found: {name} (searched: {searched})")

    def render(self, name: str, variables: Mapping[str, str]) -> str:
        path = self.find(name)
        text = path.read_text(encoding="utf-8")
        return render_text(text, variables, source=name)


def render_text(text: str, variables: Mapping[str, str], *, source: str = "<string>") -> str:
    """Replace `{{NAME}}` placeholders; unknown placeholders are left verbatim."""
    unknown: set[str] = set()

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        unknown.add(key)
        return match.group(0)

    rendered = _PLACEHOLDER_RE.sub(_substitute, text)
    if unknown:
        logger.debug("Template {} left placeholders unfilled: {}", source, ", ".join(sorted(unknown)))
    return rendered
