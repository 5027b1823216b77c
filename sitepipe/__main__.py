"""Entry point for the Sitepipe CLI.

Running ``python -m sitepipe`` behaves like the ``sitepipe`` console script.
"""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
