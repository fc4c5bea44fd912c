"""Entry point for running inboxmap as a module.

Usage:
    python -m inboxmap validate-config
    python -m inboxmap --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from inboxmap.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
