"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for neural network training.

This module provides endpoints for:
- Building networks layer by layer from the activation catalog
- Training networks with real-time progress updates via WebSockets
- Running predictions and exporting/importing model documents
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network persistence

Configuration is read from the environment:
- LOG_LEVEL: logging level (default INFO)
- FLASK_ENV: 'production' silences third-party logs
- PORT: port to listen on (default 8000)
- FENIX_MODEL_DIR: directory of the model database (default 'models')
- FENIX_CLEANUP_DAYS: age in days after which saved networks are deleted
"""

import os
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List

import gevent
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from fenix.activations import get_activation, list_activations
from fenix.exceptions import ValidationError
from fenix.network import Network
from fenix.model_persistence import (
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

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('fenix').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

MODEL_DIR = os.getenv('FENIX_MODEL_DIR', 'models')
CLEANUP_DAYS = float(os.getenv('FENIX_CLEANUP_DAYS', '2'))

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

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

ACTIVE_JOB_STATUSES = ('pending', 'training')


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
            'trained': net_info['trained'],
            'final_error': net_info['final_error']
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


reload_saved_networks()

# Training jobs can't continue after a restart, so start fresh
training_jobs.clear()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_old_networks_task() -> None:
    """
    Background task that runs immediately on startup, then every 24 hours to:
    - Delete networks older than CLEANUP_DAYS from the database
    - Sync in-memory networks with the database
    - Remove completed/failed training jobs from memory
    """
    logger.info("Cleanup task started")

    while True:
        try:
            deleted_count = delete_old_networks(days=CLEANUP_DAYS, model_dir=MODEL_DIR)

            if deleted_count > 0:
                logger.info(f"Cleanup completed: deleted {deleted_count} network(s)")

                # Remove any networks from memory that no longer exist in database
                saved_ids = {net['network_id'] for net in list_saved_networks(MODEL_DIR)}
                for nid in [nid for nid in active_networks if nid not in saved_ids]:
                    del active_networks[nid]
                    logger.info(f"Removed network {nid} from memory (deleted from database)")
            elif deleted_count == 0:
                logger.info("Cleanup completed: no old networks found to delete")
            else:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
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

    Uses gevent.spawn() directly so it works both when running directly
    and under gunicorn. Calling it more than once has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    gevent.spawn(cleanup_old_networks_task)


start_cleanup_task()


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    """Report invalid requests as HTTP 400."""
    logger.warning(f"Validation error: {error}")
    return jsonify({'error': str(error)}), 400


def _get_network_or_404(network_id: str):
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Request for non-existent network: {network_id}")
    return info


def _active_job_for(network_id: str):
    """Return the ID of a pending or running job on the network, if any."""
    for job_id, job in training_jobs.items():
        if job['network_id'] == network_id and job.get('status') in ACTIVE_JOB_STATUSES:
            return job_id
    return None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and the number of active training jobs."""
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in ACTIVE_JOB_STATUSES
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/activations', methods=['GET'])
def get_activations():
    """List the activation functions a layer can use."""
    return jsonify({'activations': list_activations()}), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body:
        {
            'input_size': 2,
            'layers': [{'neurons': 4, 'activation': 'tanh'},
                       {'neurons': 1, 'activation': 'sigmoid'}],
            'learning_rate': 0.1,       # optional
            'seed': 42                  # optional
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layers = data.get('layers')

    if not isinstance(layers, list) or not layers:
        return jsonify({
            'error': 'Invalid architecture. Must have at least 1 layer.'
        }), 400

    net = Network(
        learning_rate=data.get('learning_rate', 0.1),
        seed=data.get('seed')
    )
    for index, spec in enumerate(layers):
        if not isinstance(spec, dict):
            return jsonify({'error': f'Layer {index} must be an object'}), 400
        activation = get_activation(spec.get('activation', 'sigmoid'))
        net.add_layer(spec.get('neurons'), activation, data.get('input_size'))

    network_id = str(uuid.uuid4())
    architecture = net.get_info()['architecture']
    active_networks[network_id] = {
        'network': net,
        'architecture': architecture,
        'trained': False,
        'final_error': None
    }

    save_network(net, network_id, model_dir=MODEL_DIR, trained=False)
    logger.info(f"Created network {network_id} with architecture {architecture}")

    return jsonify({
        'network_id': network_id,
        'architecture': architecture,
        'status': 'created'
    }), 201


@app.route('/api/networks/import', methods=['POST'])
def import_network():
    """Create a network from an exported model document."""
    document = request.get_json(silent=True)
    if document is None:
        return jsonify({'error': 'Request body must be a model document'}), 400

    net = Network.import_model(document)
    network_id = str(uuid.uuid4())
    architecture = net.get_info()['architecture']
    trained = bool(net.training_history)
    final_error = net.get_info()['last_error']

    active_networks[network_id] = {
        'network': net,
        'architecture': architecture,
        'trained': trained,
        'final_error': final_error
    }
    save_network(net, network_id, model_dir=MODEL_DIR,
                 trained=trained, final_error=final_error)
    logger.info(f"Imported network {network_id} with architecture {architecture}")

    return jsonify({
        'network_id': network_id,
        'architecture': architecture,
        'status': 'imported'
    }), 201


@app.route('/api/networks/<network_id>', methods=['GET'])
def get_network(network_id: str):
    """Return the network summary from ``Network.get_info``."""
    info = _get_network_or_404(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    return jsonify({
        'network_id': network_id,
        'trained': info['trained'],
        'final_error': info['final_error'],
        'info': info['network'].get_info()
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'data': [{'input': [0, 1], 'target': [1]}, ...],
            'epochs': 2000,                       # optional
            'learning_rate': 0.1,                 # optional
            'validation_data': [...],             # optional
            'early_stopping_patience': 50         # optional
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    info = _get_network_or_404(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    running_job = _active_job_for(network_id)
    if running_job is not None:
        logger.warning(f"Network {network_id} is already training in job {running_job}")
        return jsonify({
            'error': 'Network is already training',
            'job_id': running_job
        }), 409

    data = request.get_json(silent=True) or {}
    training_data = data.get('data')
    epochs = data.get('epochs', 2000)
    validation_data = data.get('validation_data')
    patience = data.get('early_stopping_patience')

    net = info['network']
    net.validate_training_args(training_data, epochs, validation_data, patience)
    if 'learning_rate' in data:
        net.set_learning_rate(data['learning_rate'])

    job_id = str(uuid.uuid4())
    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, examples={len(training_data)}, lr={net.learning_rate}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, training_data, epochs, validation_data, patience
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    training_data: List[Dict[str, Any]],
    epochs: int,
    validation_data: Any = None,
    early_stopping_patience: Any = None
) -> None:
    """
    Background task that trains a neural network.

    Sends progress updates via WebSocket after every epoch.
    """
    net = active_networks[network_id]['network']

    def on_epoch_complete(progress_data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (progress_data['epoch'] / progress_data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': progress_data['epoch'],
            'total_epochs': progress_data['total_epochs'],
            'error': progress_data['error'],
            'validation_error': progress_data['validation_error'],
            'elapsed_time': progress_data['elapsed_time'],
            'progress': progress
        })

        # Let gevent send the message and serve other requests
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        net.train(
            training_data,
            epochs,
            validation_data=validation_data,
            early_stopping_patience=early_stopping_patience,
            callback=on_epoch_complete
        )

        final_error = net.get_info()['last_error']
        epochs_run = len(net.training_history)

        # Deleted while training: keep the job, drop the result
        entry = active_networks.get(network_id)
        if entry is None or entry['network'] is not net:
            logger.warning(
                f"Network {network_id} was deleted during job {job_id}; "
                f"discarding the trained weights"
            )
            training_jobs[job_id]['status'] = 'cancelled'
            training_jobs[job_id]['epochs_run'] = epochs_run
            socketio.emit('training_error', {
                'job_id': job_id,
                'network_id': network_id,
                'status': 'cancelled',
                'error': 'Network was deleted during training'
            })
            gevent.sleep(0)
            return

        entry['trained'] = True
        entry['final_error'] = final_error

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['final_error'] = final_error
        training_jobs[job_id]['epochs_run'] = epochs_run
        training_jobs[job_id]['progress'] = 100

        save_network(net, network_id, model_dir=MODEL_DIR,
                     trained=True, final_error=final_error)

        logger.info(
            f"Training completed for job {job_id}: "
            f"{epochs_run} epoch(s), final error {final_error:.6f}"
        )

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'final_error': final_error,
            'epochs_run': epochs_run,
            'progress': 100
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


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run a forward pass.

    Request body:
        {'input': [0, 1]}
    """
    info = _get_network_or_404(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    output = info['network'].predict(data.get('input'))

    return jsonify({
        'network_id': network_id,
        'input': data['input'],
        'output': output.tolist()
    }), 200


@app.route('/api/networks/<network_id>/export', methods=['GET'])
def export_network(network_id: str):
    """Return the exported model document."""
    info = _get_network_or_404(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    return app.response_class(
        info['network'].export_model(),
        status=200,
        mimetype='application/json'
    )


@app.route('/api/networks/<network_id>/history_plot', methods=['GET'])
def get_history_plot(network_id: str):
    """Return the training error curve as a base64-encoded PNG."""
    info = _get_network_or_404(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    history = info['network'].get_training_history()
    if not history:
        return jsonify({'error': 'Network has no training history'}), 404

    return jsonify({
        'network_id': network_id,
        'epochs': len(history),
        'image_data': create_history_image(history)
    }), 200


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'final_error': info['final_error'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = active_networks.pop(network_id, None) is not None
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
    saved_ids = [net['network_id'] for net in list_saved_networks(MODEL_DIR)]
    all_network_ids = set(active_networks) | set(saved_ids)

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if active_networks.pop(network_id, None) is not None:
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

    if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days=days, model_dir=MODEL_DIR)
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    saved_ids = {net['network_id'] for net in list_saved_networks(MODEL_DIR)}
    for nid in [nid for nid in active_networks if nid not in saved_ids]:
        del active_networks[nid]

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def create_history_image(history: List[float]) -> str:
    """
    Plot training error per epoch as a base64-encoded PNG.

    Args:
        history: Mean training error of every epoch

    Returns:
        Base64-encoded PNG image string
    """
    fig, ax = plt.subplots(figsize=(5, 3))
    ax.plot(range(1, len(history) + 1), history)
    ax.set_xlabel('Epoch')
    ax.set_ylabel('Mean squared error')
    ax.set_title('Training error')

    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    plt.close(fig)
    return base64.b64encode(buffer.getvalue()).decode('utf-8')


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
        raise
