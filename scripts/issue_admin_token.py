"""
Issue an admin bearer token for the /api/admin endpoints.

Usage:
    python scripts/issue_admin_token.py <admin_email> [hours]
"""
import os
import sys
from datetime import timedelta

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from routewise.config.settings import settings
from routewise.utils.auth import create_access_token


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/issue_admin_token.py <admin_email> [hours]")
        sys.exit(1)
    hours = int(sys.argv[2]) if len(sys.argv) > 2 else 24
    token = create_access_token({"sub": sys.argv[1], "role": "admin"}, settings, timedelta(hours=hours))
    print(f"✅ Admin token for {sys.argv[1]} (valid {hours}h):")
    print(token)
