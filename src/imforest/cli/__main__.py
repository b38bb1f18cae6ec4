"""Main CLI entry point for imforest."""

from imforest.cli import app


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
