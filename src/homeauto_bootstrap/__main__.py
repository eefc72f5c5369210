"""Allow running as `python -m homeauto_bootstrap`."""

from .main import main

if __name__ == "__main__":
    main()
