"""Global configuration for the medication reminder bot."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# Discord
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")

# Channel where alerts and toasts are posted
ALERT_CHANNEL_ID = int(os.getenv("MEDMINDER_ALERT_CHANNEL_ID", 0))

# Discord user mentioned on each alert (0 = no mention)
ALERT_USER_ID = int(os.getenv("MEDMINDER_USER_ID", 0))

# Owner (patient) whose reminders the scheduler watches. Empty = scheduler stays idle.
PATIENT_ID = os.getenv("MEDMINDER_PATIENT_ID", "")

# Supabase
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Logging
LOG_DIR = Path(os.getenv("LOCALAPPDATA", ".")) / "medminder" / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)
