"""
Commands exposed by the nsclass entrypoint
"""

# Local
from .base import CmdBase
from .run_operator_cmd import RunOperatorCmd
