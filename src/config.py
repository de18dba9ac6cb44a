"""
Central configuration for the trivia content pipeline.

Values come from the environment (optionally a .env file) with defaults
suited to local play. Components take these as constructor defaults, so
tests can pass their own.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# --- Packaged, read-only data ---
DATA_DIR = Path(__file__).resolve().parent / "trivia_data"
QUESTIONS_DIR = DATA_DIR / "questions"
TOPICS_FILE = DATA_DIR / "topics.json"

# --- Per-player state ---
STATE_DIR = Path(os.getenv("TRIVIA_STATE_DIR", str(Path.home() / ".cognito-trivia"))).expanduser()
CACHE_PATH = STATE_DIR / "quiz-cache.json"
PROFILE_PATH = STATE_DIR / "profile.json"
CACHE_MAX_BYTES = int(os.getenv("CACHE_MAX_BYTES", str(5 * 1024 * 1024)))

# --- Generation service ---
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY", "")
GENERATION_MODEL = os.getenv("GENERATION_MODEL", "gemini-2.5-flash")
GENERATION_API_URL = os.getenv(
    "GENERATION_API_URL",
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
)
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))
GENERATION_MAX_RETRIES = int(os.getenv("GENERATION_MAX_RETRIES", "2"))
GENERATION_RETRY_DELAY_SECONDS = float(os.getenv("GENERATION_RETRY_DELAY_SECONDS", "2.0"))

# --- Session pacing ---
ANSWER_ADVANCE_DELAY_SECONDS = float(os.getenv("ANSWER_ADVANCE_DELAY_SECONDS", "0.8"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
