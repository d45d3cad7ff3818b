import sys

from smartmarks import create_app
from smartmarks.cli import main

app = create_app()

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:] or ["serve"]))
