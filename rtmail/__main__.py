import sys

from rtmail.api.main import main

sys.exit(main())
