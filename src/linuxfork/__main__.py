"""linuxfork entry point.

Supports: python -m linuxfork
"""

from .app import main

if __name__ == "__main__":
    main()
