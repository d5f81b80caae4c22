"""Entry point for ``python -m tremote``."""

from tremote.cli.main import main

if __name__ == "__main__":
    main()
