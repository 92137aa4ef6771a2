"""
Configuration for a profiling or qualification run.
"""

from pydantic import BaseModel, Field


class ProfilerConfig(BaseModel):
    """Settings shared by every application analysed in one run."""
    num_output_rows: int = Field(1000, description="Maximum rows printed per text table")
    strict_mode: bool = Field(False, description="Raise on the first malformed event instead of skipping it")
    show_progress: bool = Field(False, description="Show a tqdm progress bar while reading logs")
    accelerator_plugin: str = Field(
        "com.nvidia.spark.SQLPlugin",
        description="Class name in spark.plugins that turns on accelerated execution"
    )
    accelerator_enabled_key: str = Field(
        "spark.rapids.sql.enabled",
        description="Property that can switch the accelerator off even when the plugin is loaded"
    )
    reason_max_chars: int = Field(100, description="Display width of free-text failure reasons")
    skew_factor: float = Field(3.0, description="A task is skewed when its shuffle read exceeds this multiple of the stage mean")
    generate_dot: bool = Field(False, description="Write a DOT plan graph per SQL execution")
    max_workers: int = Field(1, ge=1, description="Applications analysed in parallel")
    output_dir: str = Field("output", description="Directory receiving report files")
