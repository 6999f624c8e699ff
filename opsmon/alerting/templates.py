"""Alert lifecycle management - Notification templates.

Templates are plain files in the templates directory named
``<name>.template`` (``<name>.txt`` is also read). Placeholders use
``${field}`` syntax; unknown placeholders are left as written.
"""

import logging
import re
from pathlib import Path
from string import Template
from typing import Dict, List, Optional, Union

from opsmon.errors import ConfigError, ErrorCode, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".template", ".txt")

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class TemplateStore:
    """Reads and writes notification templates in a directory."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    @staticmethod
    def _check_name(name: str) -> None:
        if not _NAME_RE.match(name or "") or ".." in name:
            raise ValidationError(f"Invalid template name '{name}'", field="name")

    def _path_for(self, name: str) -> Optional[Path]:
        for suffix in TEMPLATE_SUFFIXES:
            candidate = self.directory / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def get(self, name: str) -> str:
        """Template text by name.

        Raises:
            NotFoundError: If no template with this name exists.
            ConfigError: If the template file cannot be read.
        """
        self._check_name(name)
        path = self._path_for(name)
        if path is None:
            raise NotFoundError(
                f"Template '{name}' not found in {self.directory}",
                error_code=ErrorCode.TEMPLATE_NOT_FOUND,
                resource_type="template",
                resource_id=name,
            )
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Cannot read template {path}: {exc}", source=str(path)) from exc

    def find(self, name: str) -> Optional[str]:
        """Like get(), but returns None for missing or unreadable templates."""
        try:
            return self.get(name)
        except (NotFoundError, ValidationError):
            return None
        except ConfigError as exc:
            logger.warning("Ignoring template '%s': %s", name, exc.message)
            return None

    def names(self) -> List[str]:
        """Names of all available templates, sorted."""
        if not self.directory.is_dir():
            return []
        found = {
            path.stem
            for path in self.directory.iterdir()
            if path.is_file() and path.suffix in TEMPLATE_SUFFIXES
        }
        return sorted(found)

    def add(self, name: str, content: str) -> Path:
        """Create or replace a template."""
        self._check_name(name)
        if not content:
            raise ValidationError("Template content is required", field="content")
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{name}{TEMPLATE_SUFFIXES[0]}"
        text = content if content.endswith("\n") else content + "\n"
        path.write_text(text, encoding="utf-8")
        logger.info("Saved template %s", path)
        return path


def render_template(text: str, values: Dict[str, str]) -> str:
    """Substitute ``${field}`` placeholders, leaving unknown ones intact."""
    return Template(text).safe_substitute(values)
