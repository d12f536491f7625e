import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def setup_logging(log_dir: Optional[Path], debug: bool = False) -> logging.Logger:
    """Configures root logging: worker.log in log_dir plus stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "worker.log", encoding='utf-8'))

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # redis-py is chatty at DEBUG
    logging.getLogger("redis").setLevel(logging.WARNING)
    return logging.getLogger("mediaworker")
