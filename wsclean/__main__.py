"""Allow running wsclean with ``python -m wsclean``."""

from wsclean.cli import app

if __name__ == "__main__":
    app(prog_name="wsclean")
