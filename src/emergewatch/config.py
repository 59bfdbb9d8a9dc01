"""Runtime configuration for emergewatch.

Settings are read once at startup from ``EMERGEWATCH_*`` environment
variables or a ``.env`` file, and can be overridden on the command line::

    export EMERGEWATCH_POLL_INTERVAL=2
    export EMERGEWATCH_GROUPED=false
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from emergewatch.matching import PHASE_RUNNER, SANDBOX_MARKER, TOOL_NAME


class WatcherSettings(BaseSettings):
    """Configuration with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="EMERGEWATCH_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Seconds between process scans
    poll_interval: int = Field(default=5, ge=1)
    # Group jobs by their emerge invocation
    grouped: bool = True
    log_level: str = "INFO"

    # Command line anchors
    tool_name: str = TOOL_NAME
    phase_runner: str = PHASE_RUNNER
    sandbox_marker: str = SANDBOX_MARKER
