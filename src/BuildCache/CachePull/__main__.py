"""Allow ``python -m BuildCache.CachePull``."""

from .cli import main

if __name__ == "__main__":
    main()
