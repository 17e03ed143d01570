"""Server-wide configuration constants for DX Party Server."""

import os

MAX_PLAYERS_PER_SESSION = 6
ROUND_COUNT = 4                 # Every session has exactly this many rounds
ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # No I, O, 0, 1
MIN_SCORE = 1
MAX_SCORE = 5

SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", str(60 * 60 * 6)))
SESSION_KEY_PREFIX = "dx-session:"
IMAGE_KEY_PREFIX = "dx-image:"
IMAGE_CHUNK_SIZE = int(os.environ.get("IMAGE_CHUNK_SIZE", "900000"))  # characters per chunk
REDIS_URL = os.environ.get("REDIS_URL", "")  # Empty -> in-memory store

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_IMAGE_ENDPOINT = os.environ.get(
    "GEMINI_IMAGE_ENDPOINT",
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-2.5-flash-image-preview:generateContent",
)
GENERATION_MAX_ATTEMPTS = int(os.environ.get("GENERATION_MAX_ATTEMPTS", "5"))
GENERATION_INITIAL_DELAY = 1.0  # seconds, doubled after each failed attempt
GENERATION_TIMEOUT_SECONDS = float(os.environ.get("GENERATION_TIMEOUT_SECONDS", "120"))

RESULT_IMAGE_MAX_BYTES = int(os.environ.get("RESULT_IMAGE_MAX_BYTES", "450000"))
GOAL_IMAGE_MAX_BYTES = int(os.environ.get("GOAL_IMAGE_MAX_BYTES", "450000"))

FEED_POLL_INTERVAL = float(os.environ.get("FEED_POLL_INTERVAL", "0.25"))
FEED_HEARTBEAT_INTERVAL = float(os.environ.get("FEED_HEARTBEAT_INTERVAL", "30"))
SSE_RETRY_MS = 3000

HOST_SECRET_HEADER = "X-Session-Host-Secret"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
