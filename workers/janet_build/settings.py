"""
Build settings
"""
from pydantic_settings import BaseSettings


class BuildSettings(BaseSettings):
    """Orchestrator settings, read from JANET_BUILD_* environment variables"""

    # Layout
    ROOT_DIR: str = "deps/janet"
    BUILD_DIR: str = "build"

    # Toolchain
    CC: str = "cc"

    # Execution
    JOBS: int = 1
    CAPTURE_LIMIT: int = 10_000_000  # bytes

    # Test discovery
    TEST_PREFIX: str = "suite"
    TEST_SUFFIX: str = ".janet"

    class Config:
        env_prefix = "JANET_BUILD_"
        env_file = ".env"
        case_sensitive = True

