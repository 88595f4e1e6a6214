import sys, logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from tqdm import tqdm

LOGGER_NAME = "radmgr"
# paramiko logs every channel open at INFO
NOISY_LOGGERS = ("paramiko", "paramiko.transport")


class TqdmStreamHandler(logging.StreamHandler):
    """Writes above the install progress bar instead of through it."""
    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=sys.stderr)
            self.flush()
        except Exception:
            self.handleError(record)


def log_format(target: str|None=None) -> logging.Formatter:
    # remote runs tag every line with the managed host
    tag = f" [{target}]" if target else ""
    return logging.Formatter(f"%(asctime)s [%(levelname)s]{tag} %(message)s")


def setup_logging(*, level: str="INFO", quiet: bool=False, log_file: str|None=None,
                  use_tqdm_handler: bool=True, target: str|None=None):
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(level.upper())
    for h in list(log.handlers):
        log.removeHandler(h)
        h.close()

    fmt = log_format(target)

    if not quiet:
        h = TqdmStreamHandler() if use_tqdm_handler else logging.StreamHandler(stream=sys.stderr)
        h.setLevel(level.upper())
        h.setFormatter(fmt)
        log.addHandler(h)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
        fh.setLevel(level.upper())
        fh.setFormatter(fmt)
        log.addHandler(fh)

    if level.upper() != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return log


def get_logger():
    return logging.getLogger(LOGGER_NAME)
