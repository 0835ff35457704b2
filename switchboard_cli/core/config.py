import os
from pathlib import Path

# Usually your project root is where pyproject.toml is
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = Path(os.environ.get("SWITCHBOARD_DATA_DIR", PROJECT_ROOT / "data"))
CREDENTIALS_FILE = PROJECT_ROOT / "credentials.json" # Path to your credentials.json
TOKEN_FILE = DATA_DIR / "token.json" # Where we'll save the login token
PANELS_FILE = DATA_DIR / "panels.json" # Saved panel configurations


# Make sure DATA_DIR exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Counting only ever reads label statistics and search estimates,
# so the read-only scope is enough.
SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']

# Gmail accepts at most 100 sub-requests per batch call. Every query needs
# two of them (total + unread), so 50 queries fit in one round trip.
ESTIMATE_BATCH_SIZE = 50

# The folder whose exact statistics back the shared "whole inbox" view.
INBOX_LABEL_ID = "INBOX"
