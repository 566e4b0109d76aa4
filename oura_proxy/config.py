import os

from dotenv import load_dotenv

load_dotenv()

# Oura API endpoints
OURA_API_BASE = os.getenv("OURA_API_BASE", "https://api.ouraring.com/v2")
OURA_SANDBOX_BASE = os.getenv("OURA_SANDBOX_BASE", "https://api.ouraring.com/v2/sandbox")

# Seconds before a single vendor call is given up on
OURA_REQUEST_TIMEOUT = float(os.getenv("OURA_REQUEST_TIMEOUT", "10.0"))

# When to retry the score families on the adjacent date: both_absent, either_absent, no_daily_data
OURA_FALLBACK_TRIGGER = os.getenv("OURA_FALLBACK_TRIGGER", "both_absent")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
