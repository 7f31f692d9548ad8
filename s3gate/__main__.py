# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Allow ``python -m s3gate``."""

import sys

from s3gate.server import main


sys.exit(main())
