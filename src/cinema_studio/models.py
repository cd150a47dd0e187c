"""Pydantic models for configuration and validation."""

from pydantic import BaseModel, Field

from .jobs.backoff import RetryPolicy


class BatchConfig(BaseModel):
    """Batch fan-out and output layout."""

    max_concurrent: int = Field(
        default=4, ge=1, description="Jobs allowed to run at once (provider overload guard)"
    )
    output_dir: str = Field(default="output", description="Directory for generated clips")
    filename_template: str = Field(
        default="segment_{index:02d}.mp4", description="Clip filename, formatted with index"
    )
    backend: str = Field(
        default="dryrun", description="Backend name or package.module:factory path"
    )


class MediaConfig(BaseModel):
    """Post-processing settings."""

    final_movie: str = Field(default="final_movie.mp4", description="Stitched movie filename")
    ffmpeg_timeout_s: int = Field(default=600, gt=0, description="Max seconds per ffmpeg call")
    kill_grace_period_s: int = Field(
        default=5, gt=0, description="Grace period between terminate and kill"
    )


class StudioConfig(BaseModel):
    """Complete application configuration with validation."""

    generation: RetryPolicy = Field(default_factory=RetryPolicy)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "StudioConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_cli_overrides(self, cli_args: dict) -> "StudioConfig":
        """Apply CLI overrides and return new config instance."""
        config_dict = self.model_dump()

        if cli_args.get("workers") is not None:
            config_dict["batch"]["max_concurrent"] = cli_args["workers"]
        if cli_args.get("output") is not None:
            config_dict["batch"]["output_dir"] = cli_args["output"]
        if cli_args.get("backend") is not None:
            config_dict["batch"]["backend"] = cli_args["backend"]
        if cli_args.get("max_attempts") is not None:
            config_dict["generation"]["max_attempts"] = cli_args["max_attempts"]
        if cli_args.get("poll_interval") is not None:
            config_dict["generation"]["poll_interval_s"] = cli_args["poll_interval"]
        if cli_args.get("job_timeout") is not None:
            config_dict["generation"]["job_timeout_s"] = cli_args["job_timeout"]

        return StudioConfig.from_dict(config_dict)
