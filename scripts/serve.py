#!/usr/bin/env python3
"""Run the Beeper HTTP service.

Usage:
  SMTP_USER=me@example.com SMTP_PASS=... python scripts/serve.py

Settings come from config.json (or the file named by BEEPER_CONFIG) and the
environment; see beeper/config.py. Pending reminders are kept in PENDING_FILE
(default pending_emails.json) and re-armed on every start.
"""
import uvicorn

from beeper.config import load_settings
from beeper.log import configure_logging
from beeper.main import create_app


def main():
    settings = load_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("beeper: exiting")
