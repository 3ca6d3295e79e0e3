"""Allow ``python -m autorepay.main <command>``."""
from .cli import main

if __name__ == "__main__":
    main()
