"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the digit classifier.

This module provides endpoints for:
- Creating and managing networks
- Training networks in the background with real-time progress updates
  via WebSockets, and cancelling training jobs
- Classifying binary pixel vectors and evaluating classification files
- Downloading and uploading weight files
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- Matplotlib for rendering pixel vectors
- SQLite for network persistence
"""

import os
import sys
import math
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
import numpy as np
from flask import Flask, Response, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitnet.config import (
    Architecture,
    TrainingConfig,
    autostart_from_env,
    model_dir_from_env
)
from digitnet.dataset import Dataset, load_dataset_from_text, parse_input_vector
from digitnet.errors import DimensionMismatchError, MalformedInputError
from digitnet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)
from digitnet.network import evaluate, forward
from digitnet.trainer import TrainingStatus, train
from digitnet.weights import initialize_weights, weights_from_text, weights_to_text

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
        logging.getLogger('digitnet').setLevel(logging.INFO)
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

MODEL_DIR = model_dir_from_env()

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

FINISHED_JOB_STATUSES = {'completed', 'diverged', 'cancelled', 'failed'}


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
        weights = load_network(network_id, MODEL_DIR)
        if weights is None:
            logger.warning(f"Failed to load network {network_id}")
            continue

        active_networks[network_id] = {
            'weights': weights,
            'architecture': net_info['architecture'],
            'trained': net_info['trained'],
            'training_status': net_info['training_status'],
            'final_cost': net_info['final_cost'],
            'accuracy': net_info['accuracy']
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


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
    - Remove finished training jobs from memory
    """
    while True:
        try:
            logger.info("Starting automatic cleanup of old networks...")
            deleted_count = delete_old_networks(days=2, model_dir=MODEL_DIR)

            if deleted_count > 0:
                logger.info(f"Cleanup completed: deleted {deleted_count} network(s)")
                sync_active_networks()
            elif deleted_count == 0:
                logger.info("Cleanup completed: no old networks found to delete")
            else:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            # Wait a bit before retrying on error
            gevent.sleep(3600)


def sync_active_networks() -> None:
    """Remove networks from memory that no longer exist in the database."""
    saved_ids = {net['network_id'] for net in list_saved_networks(MODEL_DIR)}
    networks_to_remove = [
        nid for nid, info in active_networks.items()
        if nid not in saved_ids and info['trained']
    ]
    for nid in networks_to_remove:
        del active_networks[nid]
        logger.info(f"Removed network {nid} from memory (deleted from database)")


def cleanup_finished_training_jobs() -> None:
    """
    Remove finished training jobs from memory.

    Only removes jobs that are no longer active.
    """
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in FINISHED_JOB_STATUSES
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    This function is idempotent - calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


def startup() -> None:
    """Restore saved networks and start the cleanup task."""
    reload_saved_networks()
    start_cleanup_task()


# Works with gunicorn; set DIGITNET_AUTOSTART=0 to skip (e.g. in tests)
if autostart_from_env():
    startup()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def error_response(message: str, status: int):
    return jsonify({'error': message}), status


def get_network_info(network_id: str) -> Optional[Dict[str, Any]]:
    return active_networks.get(network_id)


def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def vector_text_from_request(value: Any) -> str:
    """Accept a vector as a '0101...' string or a list of 0/1 values."""
    if isinstance(value, list):
        return ''.join(str(v) for v in value)
    if isinstance(value, str):
        return value
    raise MalformedInputError("vector must be a string or a list of 0/1 values")


def create_digit_image(inputs: List[int], predicted: int) -> str:
    """
    Create a base64-encoded PNG image of a pixel vector.

    Args:
        inputs: Binary pixel vector; drawn as a square grid when its length
            is a perfect square, otherwise as a single row
        predicted: The class the network predicted

    Returns:
        Base64-encoded PNG image string
    """
    side = math.isqrt(len(inputs))
    shape = (side, side) if side * side == len(inputs) else (1, len(inputs))

    plt.figure(figsize=(3, 3))
    plt.imshow(np.array(inputs).reshape(shape), cmap='gray_r')
    plt.title(f"Classified as: {predicted}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def dataset_from_request(data: Dict[str, Any], key: str, architecture: Architecture) -> Dataset:
    text = data.get(key)
    if not isinstance(text, str) or not text.strip():
        raise MalformedInputError(f"'{key}' must be the text of a training file")
    return load_dataset_from_text(
        text, architecture.input_size, architecture.num_classes
    )


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
    Create a new network with random weights.

    Request body (all optional):
        {
            'architecture': {'input_size': 256, 'hidden_size': 256,
                             'num_classes': 10},
            'seed': 478978392,
            'init_epsilon': 1.0
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}

    try:
        architecture = Architecture.from_dict(data.get('architecture') or {})
        defaults = TrainingConfig()
        weights = initialize_weights(
            architecture,
            epsilon=data.get('init_epsilon', defaults.init_epsilon),
            seed=data.get('seed', defaults.seed)
        )
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Invalid network requested: {e}")
        return error_response(f'Invalid architecture: {e}', 400)
    except Exception as e:
        logger.exception(f"Error creating network: {e}")
        return error_response(f'Failed to create network: {e}', 500)

    network_id = str(uuid.uuid4())
    active_networks[network_id] = {
        'weights': weights,
        'architecture': architecture.to_dict(),
        'trained': False,
        'training_status': None,
        'final_cost': None,
        'accuracy': None
    }

    logger.info(f"Created network {network_id} with architecture {architecture}")

    return jsonify({
        'network_id': network_id,
        'architecture': architecture.to_dict(),
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
            'training_status': info['training_status'],
            'final_cost': info['final_cost'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in in_memory_ids:
            net['status'] = 'saved'
            saved_only.append(net)

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """
    Delete a network from both memory and disk.

    Unfinished training jobs for the network are asked to stop.
    """
    deleted_from_memory = active_networks.pop(network_id, None) is not None
    deleted_from_disk = delete_network(network_id, MODEL_DIR)

    for job_id, job in training_jobs.items():
        if job.get('network_id') == network_id and \
                job.get('status') not in FINISHED_JOB_STATUSES:
            job['cancel_requested'] = True
            logger.info(f"Cancelling training job {job_id}: network deleted")

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return error_response('Network not found', 404)

    logger.info(
        f"Deleted network {network_id}: memory={deleted_from_memory}, "
        f"disk={deleted_from_disk}"
    )

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
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

    if not isinstance(days, (int, float)) or days < 0:
        return error_response('days must be a non-negative number', 400)

    deleted_count = delete_old_networks(days=days, model_dir=MODEL_DIR)
    if deleted_count == -1:
        return error_response('Error occurred during cleanup', 500)

    sync_active_networks()
    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'training_data': '<contents of a training file>',
            'lambda': 1.0,            # optional
            'alpha': 0.001,           # optional
            'max_iterations': 5000,   # optional
            ...                       # any other TrainingConfig field
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    info = get_network_info(network_id)
    if info is None:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return error_response('Network not found', 404)

    data = request.get_json(silent=True) or {}
    architecture = Architecture.from_dict(info['architecture'])

    # Validate everything before starting the job
    try:
        dataset = dataset_from_request(data, 'training_data', architecture)
        if len(dataset) == 0:
            raise MalformedInputError('training_data contains no records')
        config = TrainingConfig.from_dict(data)
    except MalformedInputError as e:
        return error_response(str(e), 400)
    except (TypeError, ValueError) as e:
        return error_response(f'Invalid training parameters: {e}', 400)

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'iteration': 0,
        'max_iterations': config.max_iterations,
        'cost': None,
        'cancel_requested': False
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"{len(dataset)} examples, alpha={config.alpha}, "
        f"lambda={config.lambda_}, max_iterations={config.max_iterations}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task, network_id, job_id, dataset, config
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    dataset: Dataset,
    config: TrainingConfig
) -> None:
    """
    Background task that trains a network.

    Sends progress updates via WebSocket as training progresses. A
    diverged run leaves the network's weights unchanged.
    """
    job = training_jobs[job_id]

    def on_progress(data: Dict[str, Any]) -> None:
        """Called periodically during training to send progress updates."""
        progress = (data['iteration'] / data['max_iterations']) * 100

        job['status'] = 'training'
        job['progress'] = progress
        job['iteration'] = data['iteration']
        job['cost'] = data['cost']

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'iteration': data['iteration'],
            'max_iterations': data['max_iterations'],
            'cost': data['cost'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress
        })

        # Let gevent send the message immediately
        gevent.sleep(0)

    def yield_to_other_tasks() -> None:
        gevent.sleep(0)

    try:
        info = active_networks.get(network_id)
        if info is None:
            raise LookupError(f"Network {network_id} no longer exists")

        logger.info(f"Starting training for job {job_id}")
        job['status'] = 'training'

        result = train(
            dataset,
            config,
            initial_weights=info['weights'],
            callback=on_progress,
            yield_func=yield_to_other_tasks,
            should_cancel=lambda: job['cancel_requested']
        )

        job_status = {
            TrainingStatus.DIVERGED: 'diverged',
            TrainingStatus.CANCELLED: 'cancelled'
        }.get(result.status, 'completed')

        # The network may have been deleted while training
        if active_networks.get(network_id) is not info:
            logger.warning(
                f"Network {network_id} was deleted during job {job_id}; "
                f"discarding trained weights"
            )
        elif result.status is not TrainingStatus.DIVERGED:
            accuracy = evaluate(dataset, result.weights).accuracy
            info.update({
                'weights': result.weights,
                'trained': True,
                'training_status': result.status.value,
                'final_cost': result.final_cost,
                'accuracy': accuracy
            })
            save_network(
                result.weights,
                network_id,
                model_dir=MODEL_DIR,
                trained=True,
                training_status=result.status.value,
                final_cost=result.final_cost,
                accuracy=accuracy
            )
            job['accuracy'] = accuracy

        job.update({
            'status': job_status,
            'training_status': result.status.value,
            'iteration': result.iterations,
            'cost': result.final_cost,
            'progress': 100
        })

        logger.info(
            f"Training job {job_id} finished: {result.status.value}, "
            f"cost {result.final_cost}"
        )

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': job_status,
            'training_status': result.status.value,
            'final_cost': float(result.final_cost),
            'iterations': result.iterations,
            'accuracy': job.get('accuracy'),
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

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
    job = training_jobs.get(job_id)
    if job is None:
        logger.warning(f"Status requested for non-existent job: {job_id}")
        return error_response('Training job not found', 404)

    return jsonify({k: v for k, v in job.items() if k != 'cancel_requested'}), 200


@app.route('/api/training/<job_id>/cancel', methods=['POST'])
def cancel_training(job_id: str):
    """
    Ask a training job to stop.

    The trainer checks the flag between iterations and keeps the weights
    computed so far.
    """
    job = training_jobs.get(job_id)
    if job is None:
        return error_response('Training job not found', 404)

    if job['status'] in FINISHED_JOB_STATUSES:
        return error_response(f"Training job already {job['status']}", 409)

    job['cancel_requested'] = True
    logger.info(f"Cancellation requested for training job {job_id}")
    return jsonify({'job_id': job_id, 'status': 'cancel_requested'}), 202


@app.route('/api/networks/<network_id>/classify', methods=['POST'])
def classify_vector(network_id: str):
    """
    Classify one binary pixel vector.

    Request body:
        {'vector': '0101...', 'render': false}

    Returns:
        JSON with the class index, the network output and, when
        requested, a base64 PNG of the pixel grid
    """
    info = get_network_info(network_id)
    if info is None:
        return error_response('Network not found', 404)

    data = request.get_json(silent=True) or {}
    architecture = Architecture.from_dict(info['architecture'])

    try:
        inputs = parse_input_vector(
            vector_text_from_request(data.get('vector')),
            architecture.input_size
        )
        output, _ = forward(inputs, info['weights'])
    except (MalformedInputError, DimensionMismatchError) as e:
        return error_response(str(e), 400)

    class_index = output.argmax_row()
    response = {
        'network_id': network_id,
        'class_index': class_index,
        'network_output': array_to_float_list(output.to_array())
    }
    if data.get('render'):
        response['image_data'] = create_digit_image(list(inputs), class_index)

    logger.debug(f"Network {network_id} classified vector as {class_index}")
    return jsonify(response), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['POST'])
def evaluate_network(network_id: str):
    """
    Classify every record of a classification file and count the hits.

    Request body:
        {'data': '<contents of a classification file>'}
    """
    info = get_network_info(network_id)
    if info is None:
        return error_response('Network not found', 404)

    data = request.get_json(silent=True) or {}
    architecture = Architecture.from_dict(info['architecture'])

    try:
        dataset = dataset_from_request(data, 'data', architecture)
    except MalformedInputError as e:
        return error_response(str(e), 400)

    try:
        result = evaluate(dataset, info['weights'])
    except Exception as e:
        logger.exception(f"Error evaluating network {network_id}: {e}")
        return error_response('Internal server error', 500)

    logger.info(
        f"{result.correct} vectors out of {result.total} classified correctly "
        f"by network {network_id}"
    )

    return jsonify({
        'network_id': network_id,
        'correct': result.correct,
        'total': result.total,
        'accuracy': result.accuracy,
        'percent': result.percent
    }), 200


@app.route('/api/networks/<network_id>/weights', methods=['GET'])
def download_weights(network_id: str):
    """Return the network's weights in weight-file format."""
    info = get_network_info(network_id)
    if info is None:
        return error_response('Network not found', 404)

    return Response(
        weights_to_text(info['weights']),
        mimetype='text/plain',
        headers={'Content-Disposition': f'attachment; filename={network_id}.txt'}
    )


@app.route('/api/networks/<network_id>/weights', methods=['PUT'])
def upload_weights(network_id: str):
    """
    Replace the network's weights with an uploaded weight file.

    The request body is the weight-file text. The file must match the
    network's architecture.
    """
    info = get_network_info(network_id)
    if info is None:
        return error_response('Network not found', 404)

    architecture = Architecture.from_dict(info['architecture'])
    try:
        weights = weights_from_text(request.get_data(as_text=True), architecture)
    except MalformedInputError as e:
        return error_response(str(e), 400)

    info.update({
        'weights': weights,
        'trained': True,
        'training_status': None,
        'final_cost': None,
        'accuracy': None
    })
    save_network(weights, network_id, model_dir=MODEL_DIR, trained=True)
    logger.info(f"Loaded uploaded weights into network {network_id}")

    return jsonify({'network_id': network_id, 'status': 'weights_loaded'}), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    # Check if running in cloud environment
    is_cloud = bool(os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

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
