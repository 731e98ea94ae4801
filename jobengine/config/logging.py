import logging
from rich.logging import RichHandler

def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # SQL echo stays off unless asked for explicitly
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
