import sys

from content_publisher.main import main

sys.exit(main())
