import os
from typing import Dict, Any

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))

# Redis Configuration
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Anthropic API Key (reactive review provider)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")

# Proactive classification provider; empty values are resolved from Redis at runtime
CLASSIFIER_URL = os.getenv("CLASSIFIER_URL", "")
CLASSIFIER_KEY = os.getenv("CLASSIFIER_KEY", "")
CLASSIFIER_TIMEOUT = float(os.getenv("CLASSIFIER_TIMEOUT", "30"))
CLASSIFIER_CREDENTIALS_KEY = "provider:classifier"

# Public addresses
CALLBACK_BASE_URL = os.getenv("CALLBACK_BASE_URL", "https://moderation.example.com")
IMAGE_CDN_BASE_URL = os.getenv("IMAGE_CDN_BASE_URL", "https://cdn.example.com/images")

# Image limits of the classification provider
MAX_IMAGE_BYTES = 4 * 1024 * 1024
MIN_IMAGE_EDGE = 50
SUPPORTED_IMAGE_FORMATS = {"JPEG", "PNG", "GIF", "BMP"}

# Rendition profiles: suffix appended to the image handle, target width in pixels
IMAGE_SIZES: Dict[str, Dict[str, Any]] = {
    "tiny": {"id": "d", "width": 25},
    "small": {"id": "h", "width": 50},
    "medium": {"id": "l", "width": 100},
    "large": {"id": "p", "width": 250},
    "huge": {"id": "t", "width": 500},
    "gigantic": {"id": "x", "width": 1000},
}

# Reports
DEFAULT_REPORT_THRESHOLD = 1
REPORT_FEED_LIMIT = 20
MAX_REPORT_FEED_LIMIT = 100
DEFAULT_REVIEW_COUNTRY = "USA"
DEFAULT_REVIEW_LANGUAGE = "eng"

# Provider policy codes
POLICY_CODES: Dict[str, Dict[str, str]] = {
    "EA": {
        "severity": "banned",
        "description": "Explicit adult content"
    },
    "CE": {
        "severity": "banned",
        "description": "Child endangerment or exploitation"
    },
    "HS": {
        "severity": "banned",
        "description": "Hate speech or symbols"
    },
    "TH": {
        "severity": "banned",
        "description": "Threats, harassment or bullying"
    },
    "VI": {
        "severity": "banned",
        "description": "Graphic violence"
    },
    "MW": {
        "severity": "banned",
        "description": "Malware, spyware or phishing links"
    },
    "SA": {
        "severity": "mature",
        "description": "Suggestive adult content"
    },
    "PR": {
        "severity": "mature",
        "description": "Profanity"
    },
    "DR": {
        "severity": "mature",
        "description": "Drug or alcohol use"
    },
    "SP": {
        "severity": "clean",
        "description": "Commercial or repetitive content below the removal bar"
    },
    "OK": {
        "severity": "clean",
        "description": "No policy violation found"
    }
}

# Queue Settings
MODERATION_QUEUE = "moderation_jobs"
REPORTS_QUEUE = "report_review_jobs"
MAX_JOB_ATTEMPTS = 3

# Run a synchronous review response through result processing as soon as it
# arrives instead of waiting for the provider callback
REVIEW_RESPONSE_INLINE = os.getenv("REVIEW_RESPONSE_INLINE", "true").lower() in ("1", "true", "yes")
