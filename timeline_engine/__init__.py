"""
Timeline scheduling engine.

Positions itinerary entries on a multi-day, multi-timezone calendar axis,
drives drag/resize interactions, detects conflicts and keeps linked entries
(check-in/out, transport legs) in step with the entries they follow.
"""
import logging

# Applications using this package should configure their own logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())

VERSION = "0.1.0"
