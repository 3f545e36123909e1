import sys

from storyframe import main

sys.exit(main())
