"""Configuration for the Rhyme Studio client."""

import os

# Backend API URL (default: local development)
API_BASE_URL = os.environ.get(
    "RHYME_STUDIO_API_URL",
    "http://localhost:8000",
)

# Request timeout in seconds
REQUEST_TIMEOUT = 30.0

# Transcription and storyboard generation wait on language models
LONG_REQUEST_TIMEOUT = 300.0

# Pause between queued submissions, keeps upstream rate limits happy
QUEUE_DELAY = float(os.environ.get("RHYME_STUDIO_QUEUE_DELAY", "0.5"))

# Realtime refetches are ignored this long after a local mutation
MUTATION_COOLDOWN = 5.0

# Fallback poll interval while any scene is generating
POLL_INTERVAL = float(os.environ.get("RHYME_STUDIO_POLL_INTERVAL", "8.0"))

# Wait before re-reading a scene after a network error on submission
NETWORK_RECHECK_DELAY = 2.0

# Realtime reconnect backoff bounds
REALTIME_RECONNECT_INITIAL = 1.0
REALTIME_RECONNECT_MAX = 30.0
