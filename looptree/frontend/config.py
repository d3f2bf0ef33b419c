import logging
import os
from typing import Annotated, Optional

from pydantic import AfterValidator, PositiveInt

from looptree.util.basetypes import ParsableModel
from looptree.version import assert_version, __version__

logger = logging.getLogger(__name__)

USER_CUSTOM_CONFIG_PATH_VAR = "LOOPTREE_CONFIG_PATH"
DUMP_ISL_IR_VAR = "LOOPTREE_DUMP_ISL_IR"


def dump_isl_ir_from_env() -> bool:
    return os.environ.get(DUMP_ISL_IR_VAR, "0") not in ("", "0", "false", "False")


def get_config() -> "Config":
    """
    Loads the configuration file named by the LOOPTREE_CONFIG_PATH environment
    variable. Returns the default configuration if the variable is not set.
    """
    if USER_CUSTOM_CONFIG_PATH_VAR not in os.environ:
        return Config()
    f = os.environ[USER_CUSTOM_CONFIG_PATH_VAR]
    if not os.path.exists(f):
        raise FileNotFoundError(
            f"{USER_CUSTOM_CONFIG_PATH_VAR} is set to {f}, which does not exist."
        )
    logger.info("Loading configuration file from %s", f)
    return Config.from_yaml(f)


class Config(ParsableModel):
    version: Annotated[str, AfterValidator(assert_version)] = __version__
    max_inference_rounds: Optional[PositiveInt] = None
    """
    Cap on loop bound inference rounds. Defaults to one more than the number of
    compute leaves.
    """
    count_hops: bool = False
    """ Whether the link transfer model reports hop counts. """
    dump_isl_ir: bool = False
    """ Log every intermediate relation of the mapping analysis. """

    def model_post_init(self, __context__=None) -> None:
        super().model_post_init(__context__)
        # An explicit dump_isl_ir wins over the environment.
        if "dump_isl_ir" not in self.model_fields_set and dump_isl_ir_from_env():
            self.dump_isl_ir = True
