"""Main entry point for PortKeeper - run with: python -m portkeeper"""

from portkeeper.main import main

if __name__ == "__main__":
    main()
