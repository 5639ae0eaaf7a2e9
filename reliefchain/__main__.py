import sys

from reliefchain.cli import main

sys.exit(main())
