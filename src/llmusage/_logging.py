import logging


def get_logger(name: str) -> logging.Logger:
    """Return a named logger without attaching handlers.

    Handler configuration belongs to entry points (``cli.main``) via
    ``logging.basicConfig``; library modules only ever ask for a logger.
    """
    return logging.getLogger(name)
