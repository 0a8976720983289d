import io
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from helpers_pathways.s3_utils import is_s3_path, save_to_s3_text

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class AutoFlushHandler(logging.StreamHandler):
    def emit(self, record):
        super().emit(record)
        self.flush()


def setup_logging(run_name: str, log_dir: Optional[str] = None, level: int = logging.INFO):
    """
    Create a per-run logger with buffer, console and file handlers.

    Returns:
        (logger, log_buffer) where log_buffer holds everything logged so far
    """
    # Unique logger name with timestamp and process ID to prevent collisions
    timestamp = int(time.time() * 1000)
    process_id = os.getpid()
    logger = logging.getLogger(f"logger_{run_name}_{timestamp}_{process_id}")
    logger.setLevel(level)
    logger.propagate = False
    log_buffer = io.StringIO()

    if logger.hasHandlers():
        logger.handlers.clear()

    # Memory buffer
    buffer_handler = logging.StreamHandler(log_buffer)
    buffer_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(buffer_handler)

    # Console (with auto flush)
    console_handler = AutoFlushHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    # File handler with unique filename
    logs_dir = Path(log_dir) if log_dir else Path(__file__).parent.parent / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp_str = time.strftime("%Y%m%d_%H%M%S")
    output_log_path = logs_dir / f"{run_name}_output_{timestamp_str}_{process_id}.txt"
    file_handler = logging.FileHandler(str(output_log_path), mode="w")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)

    return logger, log_buffer


def close_logging(logger: logging.Logger) -> None:
    """Flush and detach every handler of a run logger (releases the log file)."""
    for handler in list(logger.handlers):
        try:
            handler.flush()
            handler.close()
        finally:
            logger.removeHandler(handler)


def create_stream_logger(name: str = "cohort_pathways", level=logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = AutoFlushHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def save_run_logs(log_buffer: io.StringIO, export_folder: str, run_name: str,
                  logger: Optional[logging.Logger] = None, reason: Optional[str] = None) -> Optional[str]:
    """Write the captured log buffer next to the run's exports (local folder or S3 prefix)."""
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    suffix = f"_{reason}" if reason else ""
    file_name = f"log_{run_name}_{timestamp}{suffix}.txt"
    try:
        if is_s3_path(export_folder):
            log_path = f"{export_folder.rstrip('/')}/logs/{file_name}"
            save_to_s3_text(log_buffer.getvalue(), log_path, logger=logger)
        else:
            log_dir = os.path.join(export_folder, "logs")
            os.makedirs(log_dir, exist_ok=True)
            log_path = os.path.join(log_dir, file_name)
            with open(log_path, "w", encoding="utf-8") as f:
                f.write(log_buffer.getvalue())
        if logger:
            logger.info(f"✓ Logs saved: {log_path}")
        return log_path
    except Exception as e:
        if logger:
            logger.warning(f"⚠ Warning: Could not save logs: {str(e)}")
        return None
