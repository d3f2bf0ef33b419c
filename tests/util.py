"""
Shared fixtures of the tests: paths to the yaml configs and helpers to load
them and to evaluate the counts the model reports.
"""

from pathlib import Path
from typing import Optional

import islpy as isl

from looptree.frontend.mapping import Mapping
from looptree.frontend.workload import Workload
from looptree.model._looptree.reuse.isl.isl_functions import get_sum_of_pw_qpolynomial

TEST_CONFIG_PATH: Path = Path(__file__).parent / "configs"

PIPELINED_DATA = {"N": 8}


def load_single_buffer(mapping_file: Optional[str] = None) -> tuple[Workload, Mapping]:
    path = TEST_CONFIG_PATH / "single_buffer"
    workload = Workload.from_yaml(path / "single_buffer.yaml", top_key="workload")
    mapping_path = path / (mapping_file or "single_buffer.yaml")
    mapping = Mapping.from_yaml(mapping_path, top_key="mapping")
    return workload, mapping


def load_pipelined(n: int = PIPELINED_DATA["N"]) -> tuple[Workload, Mapping]:
    path = TEST_CONFIG_PATH / "pipelined"
    workload = Workload.from_yaml(
        path / "pipelined.workload.yaml", jinja_parse_data={"N": n}, top_key="workload"
    )
    mapping = Mapping.from_yaml(path / "pipelined.mapping.yaml", top_key="mapping")
    return workload, mapping


def total(count: str) -> int:
    """Sums a piecewise quasi-polynomial given as a string over its domain."""
    return get_sum_of_pw_qpolynomial(
        isl.PwQPolynomial.read_from_str(isl.DEFAULT_CONTEXT, count)
    )
