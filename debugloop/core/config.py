"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    GITHUB_TOKEN                 — Used by the github-actions source to read workflow runs
    MONITOR_API_TOKEN            — Bearer token sent to the monitoring backend APIs
    DEBUG_LOOP_MAX_ITERATIONS    — Default safety budget: max deploy → monitor → fix passes (default: 5)
    DEBUG_LOOP_MAX_DURATION      — Default safety budget: max run duration in minutes (default: 30)
    PROPAGATION_DELAY_SECONDS    — Wait after a deploy before observing the target (default: 5)
    OBSERVATION_WINDOW_SECONDS   — Length of each monitoring window (default: 30)
    DEFAULT_POLL_INTERVAL        — Poll source interval in seconds (default: 10)
    APPLY_FIX_ENDPOINT           — Endpoint the HTTP fix applicator POSTs suggestions to
    HTTP_TIMEOUT_SECONDS         — Timeout for every outbound HTTP call (default: 20)

Safety Budget:
    The two DEBUG_LOOP_* values only seed LoopConfig defaults. A LoopConfig
    always carries its own safety section, which is what the orchestrator
    enforces.
"""
import os
from dotenv import load_dotenv

load_dotenv()

GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")
MONITOR_API_TOKEN = os.getenv("MONITOR_API_TOKEN", "")

# Safety budget defaults
DEBUG_LOOP_MAX_ITERATIONS = int(os.getenv("DEBUG_LOOP_MAX_ITERATIONS", 5))
DEBUG_LOOP_MAX_DURATION = float(os.getenv("DEBUG_LOOP_MAX_DURATION", 30))

# Timing (seconds)
PROPAGATION_DELAY_SECONDS = float(os.getenv("PROPAGATION_DELAY_SECONDS", 5))
OBSERVATION_WINDOW_SECONDS = float(os.getenv("OBSERVATION_WINDOW_SECONDS", 30))
DEFAULT_POLL_INTERVAL = float(os.getenv("DEFAULT_POLL_INTERVAL", 10))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 20))

# Fix application
APPLY_FIX_ENDPOINT = os.getenv("APPLY_FIX_ENDPOINT", "http://localhost:8000/api/debug-loop/apply-fix")
MAX_FIXES_PER_ITERATION = int(os.getenv("MAX_FIXES_PER_ITERATION", 10))
