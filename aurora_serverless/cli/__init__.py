"""CLI entry point for aurora-serverless."""


def build_app():
    """Return the Typer app.

    Lazy-imports CLI deps so importing the package does not pull in Typer.
    """
    from aurora_serverless.cli.commands import app

    return app


def main():
    """Main CLI entry point."""
    build_app()()


if __name__ == "__main__":
    raise SystemExit(main())
