import sys

from potoken_service.cli import main

if __name__ == "__main__":
    sys.exit(main())
