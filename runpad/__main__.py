import sys

from runpad.gui import main

if __name__ == "__main__":
    sys.exit(main())
