import sys

from jpdsync.cli import main

sys.exit(main())
