from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Third-party loggers that are noisy at DEBUG.
_QUIET = ("PIL", "h5py")


def configure_logging(verbose: bool) -> None:
    """Route roi_trainset logs to stderr at INFO, or DEBUG when ``verbose``."""
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(level)
    logging.getLogger("roi_trainset").setLevel(level)
    for handler in root.handlers:
        handler.setLevel(level)
    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)
