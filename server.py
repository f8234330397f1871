from flask import Flask, request, jsonify
from dotenv import load_dotenv
import logging
import os
import core  # Import the scheduler
from config import DEFAULT_SESSION_CONFIG, INITIAL_SETTINGS, HISTORY_SETTINGS
from events import EventLog
from history import SessionHistory
from persistence import SessionStore

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

# --- CONFIGURATION ---
SESSION_STATE_FILE = os.getenv('SESSION_STATE_FILE', INITIAL_SETTINGS['session_state_file'])
HISTORY_DIR = os.getenv('HISTORY_DIR', HISTORY_SETTINGS['history_dir'])
HISTORY_URL = os.getenv('HISTORY_URL', HISTORY_SETTINGS['base_url'])
HISTORY_TOKEN = os.getenv('HISTORY_TOKEN')
SERVER_HOST = os.getenv('SERVER_HOST', '0.0.0.0')
SERVER_PORT = int(os.getenv('SERVER_PORT', '8080'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


def build_scheduler():
    """Wires the single scheduler this process owns, with its event log listener."""
    scheduler = core.SessionScheduler(
        store=SessionStore(SESSION_STATE_FILE),
        history=SessionHistory(HISTORY_DIR, base_url=HISTORY_URL, token=HISTORY_TOKEN),
    )
    event_log = EventLog(INITIAL_SETTINGS['event_log_size'])
    scheduler.add_listener(event_log)
    return scheduler, event_log


app = Flask(__name__)
app.config['SCHEDULER'], app.config['EVENT_LOG'] = build_scheduler()


def get_scheduler():
    return app.config['SCHEDULER']


def _error(error, status):
    return jsonify({'success': False, 'error': str(error)}), status


def _json_object():
    """Request body as a dict, or None when it is not a JSON object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _int_field(data, key, default=None):
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    return int(value)


# --- API ENDPOINTS ---

@app.route('/api/start_session', methods=['POST'])
def start_session_route():
    """Endpoint to start a session: {duration, minWait, maxWait} in seconds."""
    data = _json_object()
    if data is None:
        return _error('Request body must be a JSON object.', 400)
    if 'duration' not in data:
        return _error(core.MissingField('Missing required parameters'), 400)
    try:
        duration = _int_field(data, 'duration')
        min_wait = _int_field(data, 'minWait', DEFAULT_SESSION_CONFIG['min_wait_seconds'])
        max_wait = _int_field(data, 'maxWait', DEFAULT_SESSION_CONFIG['max_wait_seconds'])
    except (TypeError, ValueError) as e:
        return _error(e, 400)

    try:
        get_scheduler().start(duration, min_wait, max_wait)
    except core.DuplicateStart as e:
        return _error(e, 409)
    except core.SchedulerError as e:
        return _error(e, 400)
    return jsonify({'success': True, 'duration': duration, 'minWait': min_wait, 'maxWait': max_wait})


@app.route('/api/stop', methods=['POST'])
def stop_route():
    """Endpoint to stop the running session. Always succeeds."""
    get_scheduler().stop()
    return jsonify({'success': True, 'message': 'Session stopped.'})


@app.route('/api/update_notification', methods=['POST'])
def update_notification_route():
    """Endpoint for the listener to push its timeRemaining/soundsPlayed."""
    data = _json_object()
    if data is None:
        return _error('Request body must be a JSON object.', 400)
    try:
        time_remaining = _int_field(data, 'timeRemaining')
        sounds_played = _int_field(data, 'soundsPlayed')
    except (TypeError, ValueError) as e:
        return _error(e, 400)

    try:
        applied = get_scheduler().sync_external_state(time_remaining, sounds_played)
    except core.SchedulerError as e:
        return _error(e, 400)
    return jsonify({'success': True, 'applied': applied})


@app.route('/api/events', methods=['GET'])
def events_route():
    """Endpoint for the listener to poll events newer than ?since=N."""
    try:
        since = int(request.args.get('since', 0))
    except ValueError:
        return _error('since must be an integer', 400)
    event_log = app.config['EVENT_LOG']
    events = [{'seq': seq, **event.to_dict()} for seq, event in event_log.since(since)]
    return jsonify({'events': events, 'last_seq': event_log.last_seq})


@app.route('/api/state', methods=['GET'])
def get_state():
    """Endpoint for the clients to poll the current session state."""
    return jsonify(get_scheduler().snapshot())


@app.route('/api/sync_history', methods=['POST'])
def sync_history_route():
    """Endpoint to upload finished sessions that are still queued locally."""
    scheduler = get_scheduler()
    if scheduler.history is None:
        return _error('Session history is disabled.', 500)
    result = scheduler.history.upload_pending()
    return jsonify({'success': result['failed'] == 0, 'uploaded': result['success'], 'failed': result['failed']})


if __name__ == '__main__':
    logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    if get_scheduler().resume():
        logger.info("Resumed saved session")

    app.run(host=SERVER_HOST, port=SERVER_PORT)
