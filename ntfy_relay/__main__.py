"""Entry point for running the relay module directly"""
from ntfy_relay.service import main

if __name__ == "__main__":
    main()
