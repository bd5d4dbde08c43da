import sys

from masto_bridge.main import main

sys.exit(main())
