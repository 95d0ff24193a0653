import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
# Worker threads interleave in debug runs, so each line names its thread
DEBUG_LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s'

def setup_logging(log_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Routes all pdfbatch logging to a single file.

    The terminal belongs to the progress view, so nothing is logged to the
    console. Calling this again replaces the previous handlers.

    Args:
        log_dir: Directory holding compression.log
        debug: DEBUG level plus engine command lines, timings and thread names
        log_path: Explicit log file; log_dir is still created but not used
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (log_dir / "compression.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=DEBUG_LOG_FORMAT if debug else LOG_FORMAT,
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True,
    )

    logger = logging.getLogger("pdfbatch")
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
