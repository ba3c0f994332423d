from rich.console import Console

# Handles
cout = Console()
cerr = Console(stderr=True)


def print_plain(text: str, *, end: str = "\n") -> None:
    """Print text verbatim on stdout: no markup, highlighting or wrapping (log lines contain `[`/`]`)."""
    cout.print(text, end=end, markup=False, highlight=False, soft_wrap=True)
