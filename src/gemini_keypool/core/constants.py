# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Fixed values shared by the pool, the stores and the apps.
"""

# =============================================================================
# CREDENTIAL SHAPE
# =============================================================================

# Gemini API keys look like "AIza" + 35 url-safe characters
CREDENTIAL_PREFIX = "AIza"
CREDENTIAL_LENGTH = 39

MAX_POOL_SIZE = 10

# =============================================================================
# ROTATION
# =============================================================================

# Keys at or above this many consecutive failures are skipped when rotating
UNHEALTHY_FAILURE_THRESHOLD = 3

DEFAULT_ROTATION_DELAY = 0.5
MIN_ROTATION_DELAY = 0.05
MAX_ROTATION_DELAY = 10.0

# =============================================================================
# PERSISTENCE
# =============================================================================

# Storage key names kept compatible with the browser build of the studio
STORE_KEYS_NAME = "animato_keys"
STORE_HEALTH_NAME = "animato_key_health"

DEFAULT_STORE_FILENAME = "keypool.json"

# =============================================================================
# REMOTE
# =============================================================================

DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"
DEFAULT_GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_TIMEOUT = 60
