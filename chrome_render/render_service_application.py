import argparse
import logging
import os
from datetime import datetime
from pathlib import Path

import uvicorn

from chrome_render import render_controller
from chrome_render.config import get_service_config
from chrome_render.metrics_server import get_metrics_port, is_metrics_server_enabled
from chrome_render.sanitization import sanitize_path_for_logging


def setup_logging() -> Path:
    """
    Configure logging for the chrome render service with both file and console output.

    The function:
    - Sets log level from LOG_LEVEL environment variable (defaults to INFO)
    - Creates timestamped log files in the LOG_DIR directory (defaults to /opt/chrome-render/logs)
    - Configures both file and console logging handlers
    - Uses format: timestamp - logger name - log level - message

    The log files are not rotated and a new file is created on each service start.

    Returns:
        Path: The path to the created log file
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "/opt/chrome-render/logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    current_time = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"chrome-render-service_{current_time}.log"

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    file_handler = logging.FileHandler(
        log_file,
        encoding="utf-8",
        delay=False,  # Create file immediately
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    configured_level = getattr(logging, log_level, logging.INFO)  # Default to INFO if invalid
    root_logger.setLevel(configured_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Loggers with their own level must follow LOG_LEVEL as well
    for logger_name in ["playwright", "uvicorn", "chrome_render"]:
        logging.getLogger(logger_name).setLevel(configured_level)

    root_logger.info("Logging initialized with level: %s", log_level)
    root_logger.info("Log file: %s", log_file)

    for handler in root_logger.handlers:
        handler.flush()

    return log_file


def log_startup_configuration(port: int) -> None:
    """Log where the service listens and how it reaches Chromium, once logging is set up."""
    config = get_service_config()
    logging.info("Chrome render service listening port: %d", port)
    logging.info("Chromium: %s", config.endpoint_description)
    if config.chrome_path:
        logging.info("Chromium executable: %s", sanitize_path_for_logging(config.chrome_path))
    if config.chrome_flags:
        logging.info("Additional Chromium flags: %s", " ".join(config.chrome_flags))
    logging.info("Render timeout: %d ms", config.render_timeout_ms)
    if is_metrics_server_enabled():
        logging.info("Metrics server port: %d", get_metrics_port())
    else:
        logging.info("Metrics server disabled")


def start_server(port: int) -> None:
    uvicorn.run(app=render_controller.app, host="", port=port)


def main() -> None:
    """
    Main entry point for the chrome render service.

    Parses command line arguments, initializes logging, and starts the server.
    The service port can be specified via command line argument (defaults to 9080).
    """
    parser = argparse.ArgumentParser(description="Chrome render service")
    parser.add_argument("--port", default=9080, type=int, required=False, help="Service port")
    args = parser.parse_args()

    setup_logging()
    log_startup_configuration(args.port)

    start_server(args.port)


if __name__ == "__main__":
    main()
