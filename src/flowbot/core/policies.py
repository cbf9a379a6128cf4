"""Availability-vs-strictness choices made by the pipeline.

Every stage that has to pick a default when a dependency fails reads it
from here.
"""

# A failed blacklist lookup lets the message through.
BLACKLIST_FAIL_OPEN = True

# A failed welcome-tracking check/mark still sends the greeting.
WELCOME_TRACKING_FAIL_OPEN = True

# Without a behavior prompt the AI responder stays silent.
AI_REQUIRES_BEHAVIOR_PROMPT = True

# Any response-cache backend error is reported to callers as a miss.
CACHE_FAILURE_IS_MISS = True
