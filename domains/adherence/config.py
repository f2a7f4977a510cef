"""Adherence domain configuration - reminder scheduler tunables."""

import os

# Table names in Supabase
REMINDERS_TABLE = "reminders"
PRESCRIPTIONS_TABLE = "prescriptions"

# Time matching
DUE_TOLERANCE_SECONDS = float(os.environ.get("MEDMINDER_DUE_TOLERANCE_SECONDS", 40))
MISSED_GRACE_SECONDS = float(os.environ.get("MEDMINDER_MISSED_GRACE_SECONDS", 60))

# Dedup gate floor; the scheduler raises it to 2 x DUE_TOLERANCE_SECONDS
SUPPRESS_WINDOW_MINUTES = float(os.environ.get("MEDMINDER_SUPPRESS_WINDOW_MINUTES", 0.9))

# Scheduler tick; must stay below 2 x DUE_TOLERANCE_SECONDS
POLL_INTERVAL_SECONDS = float(os.environ.get("MEDMINDER_POLL_INTERVAL_SECONDS", 20))

# How often the Supabase store re-reads a subscribed path
STORE_POLL_INTERVAL_SECONDS = float(os.environ.get("MEDMINDER_STORE_POLL_INTERVAL_SECONDS", 15))

# Fallback alert path
TOAST_DURATION_MS = 5400
VIBRATE_MS = 200

# HTTP
REQUEST_TIMEOUT = 10
