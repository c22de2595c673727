import sys
import logging


def reset_logging(rank: int = 0, level: int = logging.INFO):
    """
    Config the logger such that logging.info(...) works like print(...) on the coordinating process.

    The other processes only report warnings and errors, prefixed with their rank.
    """
    root_logger = logging.getLogger()

    # clear any existing handlers
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # config logging to console as if calling print(...)
    console_handler = logging.StreamHandler(sys.stdout)
    if rank == 0:
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        console_handler.setLevel(level)
    else:
        console_handler.setFormatter(logging.Formatter(f'[rank {rank}] %(levelname)s %(message)s'))
        console_handler.setLevel(max(level, logging.WARNING))
    root_logger.addHandler(console_handler)

    # set logging level
    root_logger.setLevel(level)


def switch_log_file(log_file, rank: int = 0):
    root_logger = logging.getLogger()

    # remove all existing file handler
    for h in list(root_logger.handlers):
        if isinstance(h, logging.FileHandler):
            root_logger.removeHandler(h)
            h.close()

    # one file per process, the coordinating process keeps the plain name
    if rank != 0:
        log_file = f"{log_file}.{rank}"

    # add its own file hander
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(logging.Formatter("%(name)s %(levelname)s %(message)s"))
    root_logger.addHandler(file_handler)
