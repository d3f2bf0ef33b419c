import glob
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict

from looptree.util import yaml

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_tag(value: Any) -> str:
    """
    Returns the name of the class a value should be parsed as. Dictionaries name
    their class with a `type` key; already-constructed models use their class
    name.
    """
    if not isinstance(value, dict):
        return value.__class__.__name__
    tag = value.get("type", None)
    if tag is None:
        raise ValueError(f"No tag found for {value}. Set the type field.")
    tag = str(tag)
    if tag.startswith("!"):
        tag = tag[1:]
    return tag


def _gather_files(files) -> list[str]:
    allfiles = []
    for f in files:
        if isinstance(f, (list, tuple)):
            allfiles.extend(str(x) for x in f)
        else:
            allfiles.append(str(f))

    to_parse = []
    for f in allfiles:
        globbed = [x for x in glob.glob(f) if os.path.isfile(x)]
        if not globbed:
            raise FileNotFoundError(f"Could not find file {f}")
        for g in globbed:
            if any(os.path.samefile(g, x) for x in to_parse):
                logger.info('Ignoring duplicate file "%s" in yaml load', g)
            else:
                to_parse.append(g)
    return to_parse


def load_yaml_files(
    *files: Union[str, Path, List[Union[str, Path]]],
    jinja_parse_data: Optional[Dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Loads and combines the top-level dictionaries of one or more yaml files.
    When a top key appears in more than one file, the first occurrence wins.
    """
    rval = {}
    for f in _gather_files(files):
        if not (f.endswith(".yaml") or f.endswith(".jinja") or f.endswith(".jinja2")):
            logger.warning(
                "File %s does not end with .yaml, .jinja, or .jinja2.", f
            )
        logger.info("Loading yaml file %s", f)
        loaded = yaml.load_yaml(f, data=jinja_parse_data)
        if not isinstance(loaded, dict):
            raise TypeError(f"Expected a dictionary from file {f}, got {type(loaded)}")
        for k, v in loaded.items():
            if k in rval:
                logger.info("Ignoring repeated top key %s in %s", k, f)
            else:
                logger.info("Found top key %s in %s", k, f)
                rval[k] = v
    return rval


class FromYAMLAble:
    @classmethod
    def from_yaml(
        cls: type[T],
        *files: Union[str, Path, List[Union[str, Path]]],
        jinja_parse_data: Optional[Dict[str, Any]] = None,
        top_key: Optional[str] = None,
        **kwargs,
    ) -> T:
        """
        Loads an object from one or more yaml files.

        Each yaml file should contain a dictionary. Dictionaries are combined in
        the order they are given, and keyword arguments are added on top.

        Parameters
        ----------
        files:
            The yaml files to load. Globs are expanded.
        jinja_parse_data:
            Data used to render files as Jinja2 templates.
        top_key:
            If given, only the value under this key is parsed.

        Returns
        -------
        The parsed object.
        """
        rval = load_yaml_files(*files, jinja_parse_data=jinja_parse_data)
        if top_key is not None:
            if top_key not in rval:
                raise KeyError(f"Top key {top_key} not found in {files}")
            rval = rval[top_key]
        return cls(**rval, **kwargs)


class ParsableModel(BaseModel, FromYAMLAble):
    model_config = ConfigDict(extra="forbid")
    type: Optional[str] = None

    def model_post_init(self, __context__=None) -> None:
        if self.type is not None and self.type != self.__class__.__name__:
            raise TypeError(
                f"type field {self.type} does not match {self.__class__.__name__}"
            )

    def to_yaml(self, f: Optional[str] = None) -> str:
        dump = self.model_dump(exclude_none=True)
        if f is not None:
            yaml.write_yaml_file(f, dump)
        return yaml.to_yaml_string(dump)
