import os

# Base directory
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Paths
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "samajh.log")

# Server
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))
SESSION_TTL = 3600              # seconds of inactivity before a browser session expires
SESSION_CLEANUP_INTERVAL = 300  # seconds

# Gemini (OpenAI-compatible endpoint)
MODEL_NAME = os.getenv("SAMAJH_MODEL", "gemini-1.5-flash")
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/"
)

# Test settings
DEFAULT_TEST_DURATION = 60      # minutes
MIN_PASSING_SCORE = 70          # percent
MAX_QUESTIONS_PER_TEST = 50
DEFAULT_QUESTIONS_PER_TEST = 10

# Proctoring limits (reaching the limit auto-submits)
MAX_NO_FACE_VIOLATIONS = int(os.getenv("MAX_NO_FACE_VIOLATIONS", "3"))
MAX_MULTIPLE_FACES_VIOLATIONS = int(os.getenv("MAX_MULTIPLE_FACES_VIOLATIONS", "3"))
MAX_TAB_SWITCHES = int(os.getenv("MAX_TAB_SWITCHES", "3"))
MAX_CLIENT_ERRORS = int(os.getenv("MAX_CLIENT_ERRORS", "0")) or None   # 0 = unbounded

# Timer / face detection
TICK_INTERVAL_SECONDS = 1.0
BRIGHTNESS_THRESHOLD = 40       # mean luma (0-255) below this is "too dark"
FACE_VIOLATION_FRAMES = int(os.getenv("FACE_VIOLATION_FRAMES", "3"))   # consecutive frames before a face violation
MAX_FRAME_BYTES = 2 * 1024 * 1024
