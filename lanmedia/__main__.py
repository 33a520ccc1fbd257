"""main module"""

from lanmedia.cli import main

if __name__ == "__main__":
    main()
