"""Application-wide constants."""

from datetime import time

# Default weekly schedule seeded for new organizations (Mon-Fri 09:00-17:00)
DEFAULT_BUSINESS_HOURS_START = time(9, 0)
DEFAULT_BUSINESS_HOURS_END = time(17, 0)
DEFAULT_BUSINESS_DAYS = (1, 2, 3, 4, 5)  # 0 = Sunday

DAYS_IN_WEEK = 7

# Template rendering
FULL_NAME_FALLBACK = "there"

# Query limits
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

# Error message prefix written to executions whose dependencies never completed
DEPENDENCY_TIMEOUT_PREFIX = "DependencyTimeout"

# Header carrying the tenant for API requests
ORG_HEADER = "X-Org-Id"
WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"
