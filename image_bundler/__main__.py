import sys

from image_bundler.main import main

sys.exit(main())
