"""Entry point for python -m classprov."""

from classprov.cli import app


if __name__ == "__main__":
    app()
