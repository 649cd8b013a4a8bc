import sys

from libratone_lan.main import main

sys.exit(main())
