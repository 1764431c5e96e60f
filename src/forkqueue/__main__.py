"""``python -m forkqueue`` entry point."""

from forkqueue.cli.app import app

if __name__ == "__main__":
    app()
