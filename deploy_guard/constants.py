"""
System Constants and Configuration Defaults

This module centralizes the thresholds, durations and deployable names used by
the scorer, the canary gate and the post-deploy monitor. Every value can be
overridden from the environment.

Usage:
    from deploy_guard.constants import (
        DEFAULT_ERROR_THRESHOLD,
        DEFAULT_POLL_INTERVAL_SECONDS,
        ...
    )
"""

import os

# ============================================================================
# CONFIDENCE SCORE
# ============================================================================

BASELINE_SCORE = 100
NEUTRAL_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

SMALL_CHANGE_LINES = 50
LARGE_CHANGE_LINES = 500
SMALL_CHANGE_BONUS = 10
LARGE_CHANGE_PENALTY = 20
OUTSIDE_SOURCE_PENALTY = 10
DEPENDENCY_CHANGE_PENALTY = 15
MANY_SERVICES_PENALTY = 15
SOME_SERVICES_PENALTY = 5
STALE_DEPLOY_PENALTY = 5

# More than this many services in one run counts as "many"
MANY_SERVICES_THRESHOLD = 3
STALE_DEPLOY_DAYS = 7

# Paths listed in the "outside source" factor before eliding the rest
MAX_LISTED_PATHS = 3

SOURCE_PREFIX = os.getenv("SOURCE_PREFIX", "src/")

TEST_FILE_SUFFIXES = (
    ".test.ts",
    ".test.js",
    ".spec.ts",
    ".spec.js",
)

DEPENDENCY_FILE_NAMES = (
    "package.json",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "requirements.txt",
    "poetry.lock",
)

# Deployables that run as services. Package-only deployables (SDKs, shared
# libraries) are deliberately absent and never count as affected services.
DEFAULT_SERVICE_DEPLOYABLES = (
    "smoltbot",
    "mnemom-api",
    "mnemom-reputation",
    "mnemom-risk",
    "mnemom-website",
    "mnemom-prover",
    "hunter",
)

# ============================================================================
# CANARY AND MONITOR
# ============================================================================

DEFAULT_ERROR_THRESHOLD = float(os.getenv("DEFAULT_ERROR_THRESHOLD", "0.05"))
DEFAULT_OBSERVATION_SECONDS = int(os.getenv("DEFAULT_OBSERVATION_SECONDS", "60"))
DEFAULT_MONITOR_DURATION_SECONDS = int(os.getenv("DEFAULT_MONITOR_DURATION_SECONDS", "300"))  # 5 minutes
DEFAULT_POLL_INTERVAL_SECONDS = int(os.getenv("DEFAULT_POLL_INTERVAL_SECONDS", "30"))
DEFAULT_ENVIRONMENT = "production"

# ============================================================================
# EXTERNAL APIS
# ============================================================================

GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_API_VERSION = "2022-11-28"
CLOUDFLARE_GRAPHQL_URL = os.getenv(
    "CLOUDFLARE_GRAPHQL_URL", "https://api.cloudflare.com/client/v4/graphql"
)

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

DEFAULT_ROLLBACK_WORKFLOW = "rollback.yml"
DEFAULT_ROLLBACK_REF = "main"

# ============================================================================
# DISCRETE OUTPUT NAMES
# ============================================================================

OUTPUT_CONFIDENCE_SCORE = "confidence-score"
OUTPUT_CANARY_PASSED = "canary-passed"
OUTPUT_SUPERVISION_OUTCOME = "supervision-outcome"
