"""Allow running as ``python -m inboxview``."""

from inboxview.cli import main

if __name__ == "__main__":
    main()
