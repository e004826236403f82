"""
config.py
~~~~~~~~~

Network dimensions, defaults and logging setup.

The network shape is fixed here rather than chosen at run time. Paths and
the log level can be overridden with environment variables:

- ``LOG_LEVEL``: logging level name (default ``INFO``)
- ``FLASK_ENV``: ``production`` quiets third-party loggers
- ``DIGITNET_WEIGHTS_FILE``: weights file used by the command line
- ``DIGITNET_MODEL_DIR``: directory of the SQLite model store
- ``PORT``: port of the HTTP service
"""

import logging
import os
from typing import Optional

# MNIST: 28x28 pixel images, digits 0-9
INPUT_SIZE = 784
HIDDEN_SIZE = 300
OUTPUT_SIZE = 10
LEARNING_RATE = 0.3

WEIGHTS_FILE = os.getenv('DIGITNET_WEIGHTS_FILE', 'weights.data')
MODEL_DIR = os.getenv('DIGITNET_MODEL_DIR', 'models')
PORT = int(os.getenv('PORT', '8000'))

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[int] = None) -> None:
    """
    Set up logging for the process.

    Args:
        level: Explicit level. When omitted, ``LOG_LEVEL`` decides.
    """
    if level is None:
        level_name = os.getenv('LOG_LEVEL', 'INFO').upper()
        level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger('digitnet').setLevel(level)

    # In production, silence noisy third-party logs but keep ours
    if os.getenv('FLASK_ENV') == 'production':
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
