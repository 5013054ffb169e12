# run_server.py
from promosync.server import main

if __name__ == "__main__":
    main()
