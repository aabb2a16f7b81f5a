import sys

from pr_quality.main import main

if __name__ == "__main__":
    sys.exit(main())
