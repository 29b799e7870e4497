import sys

from .acl_manager import main

sys.exit(main())
