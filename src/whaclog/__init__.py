from typing import Final

__prog__: Final = "whaclog"
__version__: Final = "0.1.0"
