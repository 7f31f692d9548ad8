# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""S3 gateway that verifies SigV4 requests and re-signs them upstream."""

__version__ = "0.1.0"
