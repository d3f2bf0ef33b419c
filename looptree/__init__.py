from looptree.version import __version__
from looptree import frontend
from looptree.frontend import Config, Mapping, Workload
