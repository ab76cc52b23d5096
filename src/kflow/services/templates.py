"""Loading saved job templates from a JSON collection file."""

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from kflow.core.errors import ValidationError
from kflow.models.job import Template

logger = logging.getLogger(__name__)


def load_templates(path: str | Path) -> list[Template]:
    """Read a template collection.

    The file holds either a JSON list of templates or an object with a
    ``templates`` list.

    Raises:
        ValidationError: If the file is missing, unreadable or malformed
    """
    file_path = Path(path)
    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ValidationError(f"Template file not found: {file_path}") from e
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Template file {file_path} is unreadable: {e}") from e

    items = raw.get("templates") if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise ValidationError(f"Template file {file_path} must contain a list of templates")

    try:
        templates = [Template.model_validate(item) for item in items]
    except PydanticValidationError as e:
        raise ValidationError(f"Template file {file_path} has an invalid entry: {e}") from e

    logger.debug(f"Loaded {len(templates)} templates from {file_path}")
    return templates


def find_template(templates: Sequence[Template], name: str) -> Template:
    """Return the template called ``name``.

    Raises:
        ValidationError: If no template has that name
    """
    for template in templates:
        if template.name == name:
            return template
    raise ValidationError(f"Template '{name}' not found")
