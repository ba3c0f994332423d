from typing import Final

from .argparser import get_cli_args
from .env import load_env
from .logging_conf import init_logging
from .utils import cerr, cout, print_plain

__all__: Final = ["cerr", "cout", "get_cli_args", "init_logging", "load_env", "print_plain"]
