import sys

from essh.main import main

sys.exit(main())
