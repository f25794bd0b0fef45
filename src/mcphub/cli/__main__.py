"""Entry point for CLI execution as a module."""

from mcphub.cli.commands import main

if __name__ == "__main__":
    main()
