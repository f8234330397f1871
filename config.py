# config.py

# --- SESSION DEFAULTS ---
# Used by the HTTP layer when a request leaves the wait window out.
DEFAULT_SESSION_CONFIG = {
    'duration_seconds': 10 * 60,
    'min_wait_seconds': 30,
    'max_wait_seconds': 120,
}

# --- SCHEDULER TIMING ---
SCHEDULER_SETTINGS = {
    'tick_seconds': 1,
    'timer_update_every_seconds': 5,  # TIMER_UPDATE throttle (indicator still refreshes every tick)
    'tick_log_every_seconds': 10,
    'min_rearm_seconds': 1,  # floor for a sampled sound delay of 0
    'resource_retry_seconds': 30,  # opportunistic re-acquire of degraded resources
    'wake_lock_max_seconds': 10 * 60 * 60,  # 10 hours max
}

# --- PERSISTENCE ---
# Snapshot of the running session so a restarted process can pick it up again.
SESSION_STATE_FILE = "session_state.json"
MAX_SESSION_AGE_SECONDS = 24 * 60 * 60

# --- HISTORY ---
HISTORY_SETTINGS = {
    'history_dir': "history",  # One JSON file per finished session
    'base_url': None,  # Remote sessions collection; None keeps history local only
    'collection': 'sessions',
    'timeout': 15,
}

# --- EVENT LOG ---
EVENT_LOG_SIZE = 256

# --- COMBINED INITIAL SETTINGS ---
INITIAL_SETTINGS = {
    **DEFAULT_SESSION_CONFIG,
    **SCHEDULER_SETTINGS,
    'session_state_file': SESSION_STATE_FILE,
    'max_session_age_seconds': MAX_SESSION_AGE_SECONDS,
    'history_dir': HISTORY_SETTINGS['history_dir'],
    'event_log_size': EVENT_LOG_SIZE,
}
