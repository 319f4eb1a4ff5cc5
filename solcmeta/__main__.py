import sys

from solcmeta.cli import main

sys.exit(main())
