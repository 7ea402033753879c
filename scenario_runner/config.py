"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
DB_PATH = DATA_DIR / "execution_history.db"

# Engine service
ENGINE_HOST = os.getenv("ENGINE_HOST", "127.0.0.1")
ENGINE_PORT = int(os.getenv("ENGINE_PORT", "8025"))
ENGINE_URL = f"http://{ENGINE_HOST}:{ENGINE_PORT}"
OBSERVER_SEND_TIMEOUT = float(os.getenv("OBSERVER_SEND_TIMEOUT", "5"))

# Browser
AUTOMATION_BACKEND = os.getenv("AUTOMATION_BACKEND", "playwright").lower()
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "false").lower() == "true"
BROWSER_TIMEOUT = int(os.getenv("BROWSER_TIMEOUT", "30000"))

# Execution
DEFAULT_SELECTOR_TIMEOUT = int(os.getenv("DEFAULT_SELECTOR_TIMEOUT", "5000"))
STEP_DELAY_MS = int(os.getenv("STEP_DELAY_MS", "1500"))
SHUTDOWN_GRACE_SECONDS = 5


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
