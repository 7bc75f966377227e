import sys

from gmorph.cli import main

sys.exit(main())
