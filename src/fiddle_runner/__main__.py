"""fiddle-runner entry point.

Supports: python -m fiddle_runner
"""

from .app import main

if __name__ == "__main__":
    main()
