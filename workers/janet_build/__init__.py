"""
janet_build — two-stage bootstrap build orchestrator for Janet.

Compiles ``janet_boot``, captures its stdout as the amalgamated
``janet.c``, compiles the final interpreter from it, and optionally runs
the test suite against the result.
"""

__version__ = "0.1.0"
BUILDER_VERSION = "v1"
PACKAGE_NAME = "janet_build"
SCHEMA_VERSION = "0.1"
