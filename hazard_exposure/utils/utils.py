# Setup logging
import logging
import os
import warnings
import rasterio
import sys

def setup_logging(name=__name__):
    """
    Set up logging configuration for the application.

    Creates a centralized logging system that outputs to both console and file,
    so that every layer of the hazard exposure pipeline reports in the same format.

    Features:
    - Dual output: console (stdout) and file logging
    - Standardized format with timestamp, module name, level, and message
    - Automatic debug directory creation
    - Single configuration to avoid duplicate handlers

    Args:
        name (str): The name of the logger, typically __name__ from the calling module.

    Returns:
        logging.Logger: Configured logger instance ready for use

    Example:
        >>> from hazard_exposure.utils.utils import setup_logging
        >>> logger = setup_logging(__name__)
        >>> logger.info("Reducing 312 zones")
    """
    # Log directory can be redirected for batch runs
    debug_dir = os.environ.get("HAZARD_EXPOSURE_LOG_DIR", "hazard_exposure/debug")
    if not os.path.exists(debug_dir):
        os.makedirs(debug_dir)

    # Configure the root logger only once to avoid duplicate handlers
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(sys.stdout),  # Console output
                logging.FileHandler(f'{debug_dir}/exposure_assessment.log')  # File output
            ]
        )

    logger = logging.getLogger(name)
    logger.debug("Logger initialized with name: %s", name)
    return logger


def suppress_warnings():
    """
    Suppress known non-critical warnings that can clutter the output.

    Synthetic or clipped rasters frequently lack georeferencing, which makes
    rasterio emit NotGeoreferencedWarning once per read. Call this early in
    the command line entry point.
    """
    warnings.filterwarnings('ignore', category=rasterio.errors.NotGeoreferencedWarning)
