"""
Test environment: point the global database at a throwaway file and switch
off rate limiting and the scheduler before any fairflip module is imported.
"""

import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

_TEST_DIR = tempfile.mkdtemp(prefix="fairflip-tests-")

os.environ["DB_PATH"] = os.path.join(_TEST_DIR, "fairflip_test.db")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["WITHDRAWAL_SCHEDULER_ENABLED"] = "false"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["LOG_LEVEL"] = "WARNING"
