"""Configuration management for codeunveil."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from codeunveil.core.languages import normalize_language
from codeunveil.core.scoring import ConfidencePolicy

# Load .env from multiple locations
# 1. Current working directory
load_dotenv()
# 2. Project directory (where this package is installed)
_package_dir = Path(__file__).parent
load_dotenv(_package_dir.parent / ".env")
# 3. Home directory config
load_dotenv(Path.home() / ".config" / "codeunveil" / ".env")

MIN_OBFUSCATION_LEVEL = 1
MAX_OBFUSCATION_LEVEL = 10


class Config(BaseSettings):
    """Configuration for codeunveil."""

    # Analysis Settings
    default_language: str = Field(default="lua", description="Language assumed when none is given or detected")
    confidence_policy: ConfidencePolicy = Field(
        default=ConfidencePolicy.PATTERN,
        description="How reported confidence is derived from the pattern analysis",
    )
    max_input_bytes: int = Field(default=5 * 1024 * 1024, ge=1, description="Largest accepted input (UTF-8 bytes)")

    # Rewrite Settings
    indent_width: int = Field(default=2, ge=1, le=8, description="Spaces per indentation level when re-indenting")
    add_header: bool = Field(default=True, description="Prepend a header comment to deobfuscated output")
    preserve_common_names: bool = Field(
        default=True,
        description="Keep meaningful short names (i, j, k, x, y, id, ...) during identifier normalization",
    )

    # Encoder Settings
    obfuscation_level: int = Field(default=5, description="Default encoder level (clamped into 1-10)")
    encoder_seed: Optional[int] = Field(default=None, description="Seed for reproducible encoder output")

    # Processing Settings
    concurrency: int = Field(default=4, ge=1, description="Files processed at once when given a directory")

    # Output Settings
    output_dir: Optional[Path] = Field(default=None, description="Output directory for processed files")
    json_output: bool = Field(default=False, description="Print reports as JSON instead of tables")

    model_config = {
        "env_prefix": "CODEUNVEIL_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("obfuscation_level", mode="before")
    @classmethod
    def clamp_level(cls, v) -> int:
        """Clamp out-of-range levels instead of rejecting them."""
        return max(MIN_OBFUSCATION_LEVEL, min(MAX_OBFUSCATION_LEVEL, int(v)))

    @field_validator("default_language", mode="before")
    @classmethod
    def normalize_default_language(cls, v: str) -> str:
        return normalize_language(v)

    def stage_options(self) -> dict:
        """Options threaded to the rewrite stages through the stage context."""
        return {
            "indent_width": self.indent_width,
            "add_header": self.add_header,
            "preserve_common_names": self.preserve_common_names,
        }
