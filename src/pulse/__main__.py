"""Allow running Pulse as ``python -m pulse``."""

from pulse import main

if __name__ == "__main__":
    main()
