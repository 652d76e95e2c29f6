"""
Test settings – deterministic values so the suite runs without a .env file.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from .base import *  # noqa: E402, F401, F403

DEBUG = False
ALLOWED_HOSTS = ["testserver", "localhost"]

# Tests inject their own service; keep startup free of repository and keys.
CONFIG_GIT_URI = ""
ENCRYPT_KEY = ""
ENCRYPT_KEY_STORE_LOCATION = ""
ENCRYPT_KEY_PROVIDER = ""
ENCRYPT_CLIENT_KEYS = []

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
