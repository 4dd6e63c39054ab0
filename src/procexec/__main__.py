"""procexec entry point.

Supports: python -m procexec
"""

from .app import main

if __name__ == "__main__":
    main()
