"""
Runtime settings. Each value can be overridden from the environment or a .env file.
"""

import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("ROADSIDE_LOG_LEVEL", "INFO")

# Matching
DEFAULT_SEARCH_RADIUS_KM = float(os.getenv("ROADSIDE_SEARCH_RADIUS_KM", "50"))
MAX_CANDIDATES = int(os.getenv("ROADSIDE_MAX_CANDIDATES", "5"))

# Provider directory reads
DIRECTORY_RETRY_ATTEMPTS = int(os.getenv("ROADSIDE_DIRECTORY_RETRY_ATTEMPTS", "3"))
DIRECTORY_RETRY_DELAY_SECONDS = float(
    os.getenv("ROADSIDE_DIRECTORY_RETRY_DELAY_SECONDS", "0.2")
)

# Client-side tracking
TRACKING_POLL_INTERVAL_SECONDS = float(
    os.getenv("ROADSIDE_TRACKING_POLL_INTERVAL_SECONDS", "5")
)

SAMPLE_DATA_PATH = os.getenv("ROADSIDE_SAMPLE_DATA")
