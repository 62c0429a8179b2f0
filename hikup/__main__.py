"""Entry point for `python -m hikup`."""

from hikup.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
