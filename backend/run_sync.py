# run_sync.py
import sys

from promosync.sync import main

if __name__ == "__main__":
    sys.exit(main())
