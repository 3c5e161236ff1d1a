import sys

from couchpenter.cli import main

sys.exit(main())
