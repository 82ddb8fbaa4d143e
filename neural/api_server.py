"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for neural network training.

This module provides endpoints for:
- Creating networks and running inference on them
- Training networks on caller-supplied examples with real-time progress
  updates via WebSockets
- Exporting and importing networks in the NETWORK/LAYER/NEURON weight format
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- Matplotlib for training error plots
- SQLite for network persistence
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Local imports
from neural.activation import Activation
from neural.exceptions import DimensionMismatchError, MalformedRecordError
from neural.network import Network
from neural.model_persistence import (
    dump_network,
    parse_network,
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    # Set up basic logging format
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('neural').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

is_production = os.getenv('FLASK_ENV') == 'production'

# Directory of the SQLite model store
MODEL_DIR = os.getenv('NEURAL_MODEL_DIR', 'models')

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

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup to restore networks that were saved before the
    application was restarted.
    """
    saved_networks = list_saved_networks(MODEL_DIR)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, MODEL_DIR)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue

        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'activation': net_info['activation'],
            'trained': net_info['trained'],
            'mse': net_info['mse'],
            'history': []
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


reload_saved_networks()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_old_networks_task() -> None:
    """
    Background task that runs immediately on startup, then every 24 hours to:
    - Delete networks older than 2 days from the database
    - Sync in-memory networks with the database
    - Remove completed/failed training jobs from memory
    """
    while True:
        try:
            logger.info("Starting automatic cleanup of old networks...")
            deleted_count = delete_old_networks(days=2, model_dir=MODEL_DIR)

            if deleted_count > 0:
                # Drop in-memory networks that are no longer in the database
                saved_ids = {
                    net['network_id'] for net in list_saved_networks(MODEL_DIR)
                }
                networks_to_remove = [
                    nid for nid in active_networks.keys()
                    if nid not in saved_ids
                ]
                for nid in networks_to_remove:
                    del active_networks[nid]
                    logger.info(f"Removed network {nid} from memory (deleted from database)")
                logger.info(f"Cleanup completed: deleted {deleted_count} network(s)")
            elif deleted_count == 0:
                logger.info("Cleanup completed: no old networks found to delete")
            else:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            # Wait a bit before retrying on error (don't spam)
            gevent.sleep(3600)


def cleanup_finished_training_jobs() -> None:
    """Remove completed, failed or cancelled training jobs from memory."""
    finished_statuses = {'completed', 'failed', 'cancelled'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    Idempotent: calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


# Start the cleanup task when module is loaded (works with gunicorn)
start_cleanup_task()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.asarray(array).flatten()]


def is_number(value: Any) -> bool:
    """True for an int or float, bools excluded."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_positive_int(value: Any) -> bool:
    """True for an int greater than zero, bools excluded."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_number_list(value: Any) -> bool:
    """True for a non-empty list of ints/floats (bools excluded)."""
    return isinstance(value, list) and len(value) > 0 and all(
        is_number(v) for v in value
    )


def parse_examples(raw: Any) -> List[Tuple[List[float], List[float]]]:
    """
    Validate a training example list from a request body.

    Raises:
        ValueError: If the examples are not a non-empty list of
            {'input': [...], 'expected': [...]} objects
    """
    if not isinstance(raw, list) or not raw:
        raise ValueError('examples must be a non-empty list')

    examples = []
    for index, example in enumerate(raw):
        if not isinstance(example, dict):
            raise ValueError(f'example {index} must be an object')
        inputs = example.get('input')
        expected = example.get('expected')
        if not is_number_list(inputs) or not is_number_list(expected):
            raise ValueError(
                f'example {index} needs numeric "input" and "expected" lists'
            )
        examples.append((inputs, expected))
    return examples


def register_network(network_id: str, net: Network, trained: bool = False) -> None:
    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'activation': net.activation.value,
        'trained': trained,
        'mse': None,
        'history': []
    }


def create_error_plot(history: List[float], network_id: str) -> str:
    """
    Create a base64-encoded PNG image of the training error per epoch.

    Args:
        history: Mean squared error of each epoch
        network_id: Used in the plot title

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(5, 3))
    plt.plot(range(1, len(history) + 1), history)
    plt.yscale('log')
    plt.xlabel('Epoch')
    plt.ylabel('MSE')
    plt.title(f"Training error: {network_id[:8]}")

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of active networks and training jobs that are
    currently in progress (status='pending' or 'training').
    """
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body:
        {
            'input_size': 2,
            'output_size': 1,
            'hidden_sizes': [2],      # optional, defaults to []
            'activation': 'tanh'      # optional, 'tanh' or 'sigmoid'
        }

    Returns:
        JSON with network_id, architecture, activation, and status
    """
    data = request.get_json(silent=True) or {}
    input_size = data.get('input_size')
    output_size = data.get('output_size')
    hidden_sizes = data.get('hidden_sizes', [])

    valid_sizes = (
        is_positive_int(input_size) and
        is_positive_int(output_size) and
        isinstance(hidden_sizes, list) and
        all(is_positive_int(size) for size in hidden_sizes)
    )
    if not valid_sizes:
        logger.warning(f"Invalid architecture requested: {data}")
        return jsonify({
            'error': 'input_size and output_size must be positive integers, '
                     'hidden_sizes a list of positive integers'
        }), 400

    try:
        activation = Activation.from_name(data.get('activation', 'tanh'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    network_id = str(uuid.uuid4())
    net = Network(input_size, output_size, hidden_sizes, activation)
    register_network(network_id, net)

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'activation': activation.value,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/run', methods=['POST'])
def run_network(network_id: str):
    """
    Run a network on a single input vector.

    Request body:
        {'input': [0.0, 1.0]}

    Returns:
        JSON with network_id and output
    """
    if network_id not in active_networks:
        logger.warning(f"Run requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    inputs = data.get('input')
    if not is_number_list(inputs):
        return jsonify({'error': 'input must be a non-empty list of numbers'}), 400

    net = active_networks[network_id]['network']
    try:
        output = net.run(inputs)
    except DimensionMismatchError as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'network_id': network_id,
        'output': array_to_float_list(output)
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'examples': [{'input': [0, 1], 'expected': [1]}, ...],
            'epochs': 1000,           # optional
            'learning_rate': 0.5      # optional
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    # A network must never be trained by two jobs at once
    busy = any(
        job['network_id'] == network_id and
        job.get('status') in ('pending', 'training')
        for job in training_jobs.values()
    )
    if busy:
        return jsonify({'error': 'Network is already being trained'}), 409

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 1000)
    learning_rate = data.get('learning_rate', 0.5)

    if not is_positive_int(epochs):
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not is_number(learning_rate) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    try:
        examples = parse_examples(data.get('examples'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    net = active_networks[network_id]['network']
    for inputs, expected in examples:
        if len(inputs) != net.input_size or len(expected) != net.output_size:
            return jsonify({
                'error': f'examples must have {net.input_size} inputs and '
                         f'{net.output_size} expected values'
            }), 400

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"examples={len(examples)}, epochs={epochs}, lr={learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, examples, epochs, learning_rate
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


class TrainingCancelled(Exception):
    """The network was deleted while one of its training jobs was running."""


def train_network_task(
    network_id: str,
    job_id: str,
    examples: List[Tuple[List[float], List[float]]],
    epochs: int,
    learning_rate: float
) -> None:
    """
    Background task that trains a neural network.

    Sends progress updates via WebSocket as training progresses. Stops,
    without saving, once the network is deleted or replaced.
    """
    net_info = active_networks[network_id]
    net = net_info['network']

    def check_active() -> None:
        if active_networks.get(network_id) is not net_info:
            raise TrainingCancelled(f"Network {network_id} was deleted")

    def yield_to_others() -> None:
        gevent.sleep(0)
        check_active()

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'mse': data['mse'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

        # Let gevent send the message immediately
        yield_to_others()

    try:
        logger.info(f"Starting training for job {job_id}")

        history = net.train(
            examples,
            epochs,
            learning_rate,
            callback=on_epoch_complete,
            yield_func=yield_to_others
        )
        mse = history[-1]

        # No yield between this check and the save
        check_active()

        net_info['trained'] = True
        net_info['mse'] = mse
        net_info['history'].extend(history)

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['mse'] = mse
        training_jobs[job_id]['progress'] = 100

        save_network(net, network_id, model_dir=MODEL_DIR, trained=True, mse=mse)

        logger.info(f"Training completed for job {job_id}: mse {mse:.6f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'mse': mse,
            'progress': 100
        })
        gevent.sleep(0)

    except TrainingCancelled as e:
        logger.info(f"Training cancelled for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'cancelled'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'cancelled',
            'error': str(e)
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'activation': info['activation'],
            'trained': info['trained'],
            'mse': info['mse'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    # Get saved networks, excluding duplicates already in memory
    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in in_memory_ids:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>/export', methods=['GET'])
def export_network(network_id: str):
    """Download a network in the NETWORK/LAYER/NEURON weight format."""
    if network_id not in active_networks:
        logger.warning(f"Export requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = dump_network(active_networks[network_id]['network'])
    return send_file(
        BytesIO(data),
        mimetype='application/octet-stream',
        as_attachment=True,
        download_name=f'{network_id}.nn'
    )


@app.route('/api/networks/import', methods=['POST'])
def import_network():
    """
    Import a network from a weight format document in the request body.

    Query parameters:
        activation: activation the network was trained with (default tanh)

    Returns:
        JSON with the new network_id and architecture
    """
    try:
        activation = Activation.from_name(request.args.get('activation', 'tanh'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    try:
        net = parse_network(request.get_data(), activation)
    except MalformedRecordError as e:
        logger.warning(f"Rejected malformed network upload: {e}")
        return jsonify({'error': f'Malformed network document: {e}'}), 400

    network_id = str(uuid.uuid4())
    register_network(network_id, net, trained=True)
    save_network(net, network_id, model_dir=MODEL_DIR, trained=True)

    logger.info(f"Imported network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'activation': activation.value,
        'status': 'imported'
    }), 201


@app.route('/api/networks/<network_id>/error_curve', methods=['GET'])
def get_error_curve(network_id: str):
    """Return a PNG plot of the per-epoch training error."""
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    history = active_networks[network_id]['history']
    if not history:
        return jsonify({'error': 'Network has no training history'}), 404

    return jsonify({
        'network_id': network_id,
        'epochs': len(history),
        'image_data': create_error_plot(history, network_id)
    }), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = False
    if network_id in active_networks:
        del active_networks[network_id]
        deleted_from_memory = True

    deleted_from_disk = delete_network(network_id, MODEL_DIR)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and disk."""
    in_memory_ids = list(active_networks.keys())
    saved_ids = [net['network_id'] for net in list_saved_networks(MODEL_DIR)]
    all_network_ids = list(set(in_memory_ids + saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if network_id in active_networks:
            del active_networks[network_id]
            deleted_from_memory_count += 1

        if delete_network(network_id, MODEL_DIR):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_network_ids)} network(s)'
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually trigger cleanup of networks older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to 2
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if not is_number(days) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days=days, model_dir=MODEL_DIR)
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    is_cloud = bool(os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_cloud,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
