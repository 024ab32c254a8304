"""Entry point for ``python -m stoke``."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
