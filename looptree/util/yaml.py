"""
YAML reading and writing. Input files may be Jinja2 templates; they are rendered
with the given data before being parsed.
"""

import io
import logging
from pathlib import Path
from typing import Any, Optional, Union

from jinja2 import StrictUndefined, Template
from ruamel.yaml import YAML

logger = logging.getLogger(__name__)


def _yaml() -> YAML:
    return YAML(typ="safe")


def load_yaml_string(
    string: str, data: Optional[dict[str, Any]] = None, source: str = "<string>"
) -> Any:
    """Renders `string` as a Jinja2 template with `data`, then parses it as YAML."""
    if data:
        string = Template(string, undefined=StrictUndefined).render(**data)
    logger.debug("Parsing YAML from %s", source)
    return _yaml().load(string)


def load_yaml(path: Union[str, Path], data: Optional[dict[str, Any]] = None) -> Any:
    with open(path, mode="r", encoding="utf-8") as f:
        return load_yaml_string(f.read(), data=data, source=str(path))


def to_yaml_string(data: Any) -> str:
    stream = io.StringIO()
    _yaml().dump(data, stream)
    return stream.getvalue()


def write_yaml_file(path: Union[str, Path], data: Any) -> None:
    with open(path, mode="w", encoding="utf-8") as f:
        f.write(to_yaml_string(data))
