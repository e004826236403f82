"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the digit network.

This module provides endpoints for:
- Creating and managing networks
- Training networks on posted CSV rows with real-time progress updates
- Querying and evaluating networks, and rendering an example digit
- Persisting networks to/from the SQLite store

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for background training tasks
- SQLite for network persistence

A network that has a training job pending or running is busy: every other
request that reads or changes it is answered with 409 until the job ends.
"""

import base64
import logging
import math
import os
import sys
import time
import uuid
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitnet import config
from digitnet.matrix import Matrix
from digitnet.mnist_loader import parse_row, parse_training_set, pixels_to_input
from digitnet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network
)
from digitnet.network import Network, TrainingLabel

logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# Emit a training_update every this many examples
PROGRESS_EVERY = 100

# Finished jobs kept in memory for status polling
MAX_FINISHED_JOBS = 100

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

ACTIVE_STATUSES = ('pending', 'training')
FINISHED_STATUSES = ('completed', 'failed')


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup to restore networks that were saved before the
    server was restarted.
    """
    saved_networks = list_saved_networks()

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue

        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'trained': net_info['trained'],
            'accuracy': net_info['accuracy']
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


def cleanup_finished_training_jobs(keep: int = MAX_FINISHED_JOBS) -> None:
    """
    Forget the oldest completed or failed jobs beyond the newest ``keep``.

    Jobs that are still pending or training are never removed.
    """
    finished = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in FINISHED_STATUSES
    ]
    finished.sort(key=lambda job_id: training_jobs[job_id].get('finished_at', 0.0))

    jobs_to_remove = finished[:max(0, len(finished) - keep)]
    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def is_training(network_id: str) -> bool:
    """Whether a job for ``network_id`` is pending or running."""
    return any(
        job['network_id'] == network_id and job.get('status') in ACTIVE_STATUSES
        for job in training_jobs.values()
    )


def get_network_info(network_id: str) -> Optional[Dict[str, Any]]:
    """Return the in-memory entry for a network, loading it from disk if needed."""
    if network_id in active_networks:
        return active_networks[network_id]

    net = load_network(network_id)
    if net is None:
        return None

    metadata = next(
        (info for info in list_saved_networks() if info['network_id'] == network_id),
        {}
    )
    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'trained': metadata.get('trained', False),
        'accuracy': metadata.get('accuracy')
    }
    logger.info(f"Loaded network {network_id} from storage into memory")
    return active_networks[network_id]


def lookup_idle_network(network_id: str) -> Tuple[Optional[Dict[str, Any]], Optional[Tuple]]:
    """
    Find a network that is not being trained.

    Returns:
        (network_info, None) when found, otherwise (None, error_response)
    """
    net_info = get_network_info(network_id)
    if net_info is None:
        logger.warning(f"Request for non-existent network: {network_id}")
        return None, (jsonify({'error': 'Network not found'}), 404)

    if is_training(network_id):
        return None, (jsonify({'error': 'Network is currently training'}), 409)

    return net_info, None


def parse_rows_payload(data: Dict[str, Any], input_size: int, output_size: int) -> List[TrainingLabel]:
    """
    Parse the ``rows`` field of a request body into training labels.

    Raises:
        ValueError: If ``rows`` is missing, empty or contains a malformed row
    """
    rows = data.get('rows')
    if not isinstance(rows, list) or not rows:
        raise ValueError('rows must be a non-empty list of CSV lines')
    if not all(isinstance(row, str) for row in rows):
        raise ValueError('every row must be a string')

    training_set = parse_training_set(rows, input_size, output_size)
    if not training_set:
        raise ValueError('rows must contain at least one non-blank line')
    return training_set


def matrix_to_float_list(matrix: Matrix) -> List[float]:
    """Flatten a matrix to a list of floats (for JSON serialization)."""
    return list(matrix.entries())


def create_digit_image(pixels: List[int], predicted: int, actual: Optional[int]) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        pixels: Square number of raw pixel values (784 for 28x28)
        predicted: The digit the network predicted
        actual: The correct digit, if known

    Returns:
        Base64-encoded PNG image string
    """
    side = math.isqrt(len(pixels))
    image = np.asarray(pixels, dtype=np.float64)[:side * side].reshape(side, side)

    title = f"Predicted: {predicted}"
    if actual is not None:
        title += f" | Actual: {actual}"

    plt.figure(figsize=(3, 3))
    plt.imshow(image, cmap='gray')
    plt.title(title)
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

def train_network_task(
    network_id: str,
    job_id: str,
    training_set: List[TrainingLabel]
) -> None:
    """
    Background task that trains a network for one epoch and saves it.

    Sends progress updates via WebSocket as training progresses.
    """
    net_info = active_networks[network_id]
    net: Network = net_info['network']
    started = time.monotonic()

    def on_example_complete(count: int, total: int) -> None:
        """Called after each training example; reports every PROGRESS_EVERY."""
        if count % PROGRESS_EVERY and count != total:
            return

        progress = count / total * 100
        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        # Send update to connected clients via WebSocket
        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'count': count,
            'total': total,
            'progress': progress,
            'elapsed_time': time.monotonic() - started
        })

        # Let gevent send the message and serve other requests
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")
        training_jobs[job_id]['status'] = 'training'

        net.train(training_set, callback=on_example_complete)

        correct = net.evaluate(training_set)
        accuracy = correct / len(training_set)

        net_info['trained'] = True
        net_info['accuracy'] = accuracy

        training_jobs[job_id].update({
            'status': 'completed',
            'progress': 100,
            'accuracy': accuracy,
            'correct': correct,
            'total': len(training_set),
            'finished_at': time.time()
        })

        # Save the trained network
        if not save_network(net, network_id, trained=True, accuracy=accuracy):
            logger.warning(f"Trained network {network_id} could not be saved")

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy:.2%}")

        # Notify clients that training is complete
        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': accuracy,
            'correct': correct,
            'total': len(training_set),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id].update({
            'status': 'failed',
            'error': str(e),
            'finished_at': time.time()
        })

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of networks in memory and training jobs that are
    currently in progress (status='pending' or 'training').
    """
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_STATUSES
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network with random weights.

    Request body (optional):
        {'hidden_size': 300, 'learning_rate': 0.3}

    The input and output layers are fixed at 784 and 10.

    Returns:
        JSON with network_id, architecture, learning_rate and status
    """
    data = request.get_json(silent=True) or {}
    hidden_size = data.get('hidden_size', config.HIDDEN_SIZE)
    learning_rate = data.get('learning_rate', config.LEARNING_RATE)

    if isinstance(hidden_size, bool) or not isinstance(hidden_size, int) or hidden_size < 1:
        logger.warning(f"Invalid hidden_size requested: {hidden_size}")
        return jsonify({'error': 'hidden_size must be a positive integer'}), 400
    if isinstance(learning_rate, bool) or not isinstance(learning_rate, (int, float)) \
            or not learning_rate > 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    network_id = str(uuid.uuid4())
    net = Network(config.INPUT_SIZE, hidden_size, config.OUTPUT_SIZE, learning_rate)

    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'trained': False,
        'accuracy': None
    }

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'learning_rate': net.learning_rate,
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'training': is_training(nid),
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    # Get saved networks, excluding duplicates already in memory
    saved_only = []
    for net in list_saved_networks():
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    if is_training(network_id):
        return jsonify({'error': 'Network is currently training'}), 409

    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start one epoch of training in the background.

    Request body:
        {'rows': ['5,0,0,...', '0,0,12,...']}

    Returns:
        JSON with job_id, network_id, and status
    """
    net_info, error = lookup_idle_network(network_id)
    if error:
        return error

    net: Network = net_info['network']
    data = request.get_json(silent=True) or {}
    try:
        training_set = parse_rows_payload(data, net.input_size, net.output_size)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    cleanup_finished_training_jobs()
    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'job_id': job_id,
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'total': len(training_set)
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"{len(training_set)} examples, lr={net.learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, training_set
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/query', methods=['POST'])
def query_network(network_id: str):
    """
    Classify one image.

    Request body:
        {'pixels': [0, 0, 255, ...]}  # input_size integers in [0, 255]

    Returns:
        JSON with predicted_digit and the raw network output
    """
    net_info, error = lookup_idle_network(network_id)
    if error:
        return error

    net: Network = net_info['network']
    data = request.get_json(silent=True) or {}
    pixels = data.get('pixels')
    if not isinstance(pixels, list):
        return jsonify({'error': 'pixels must be a list of integers'}), 400

    try:
        input_vector = pixels_to_input(pixels, net.input_size)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'network_id': network_id,
        'predicted_digit': net.query(input_vector),
        'network_output': matrix_to_float_list(net.feedforward(input_vector))
    }), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['POST'])
def evaluate_network(network_id: str):
    """
    Count correct predictions over posted rows.

    Request body:
        {'rows': ['5,0,0,...', ...]}

    Returns:
        JSON with correct, total and accuracy
    """
    net_info, error = lookup_idle_network(network_id)
    if error:
        return error

    net: Network = net_info['network']
    data = request.get_json(silent=True) or {}
    try:
        training_set = parse_rows_payload(data, net.input_size, net.output_size)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    correct = net.evaluate(training_set)
    total = len(training_set)

    return jsonify({
        'network_id': network_id,
        'correct': correct,
        'total': total,
        'accuracy': correct / total
    }), 200


@app.route('/api/networks/<network_id>/example', methods=['POST'])
def get_example(network_id: str):
    """
    Classify one CSV row and render it as an image.

    Request body:
        {'row': '5,0,0,...'}

    Returns:
        JSON with image, prediction details, and network output
    """
    net_info, error = lookup_idle_network(network_id)
    if error:
        return error

    net: Network = net_info['network']
    data = request.get_json(silent=True) or {}
    row = data.get('row')
    if not isinstance(row, str):
        return jsonify({'error': 'row must be a CSV line'}), 400

    try:
        training_label = parse_row(row, net.input_size, net.output_size)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    predicted_digit = net.query(training_label.input)
    pixels = [int(token) for token in row.strip().split(',')[1:]]

    return jsonify({
        'network_id': network_id,
        'predicted_digit': predicted_digit,
        'actual_digit': training_label.class_index,
        'correct': predicted_digit == training_label.class_index,
        'image_data': create_digit_image(pixels, predicted_digit, training_label.class_index),
        'network_output': matrix_to_float_list(net.feedforward(training_label.input))
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    """Start the server with WebSocket support."""
    config.configure_logging()
    reload_saved_networks()

    port = config.PORT
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        raise


if __name__ == '__main__':
    main()
