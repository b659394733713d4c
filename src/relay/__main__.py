"""``python -m relay`` entry point."""

from relay.cli.app import app

if __name__ == "__main__":
    app()
