from looptree.frontend import config
from looptree.frontend import mapping
from looptree.frontend import workload
from looptree.frontend.config import Config
from looptree.frontend.mapping import Mapping
from looptree.frontend.workload import Workload
