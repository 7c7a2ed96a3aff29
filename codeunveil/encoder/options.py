"""Encoder configuration."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

MIN_LEVEL = 1
MAX_LEVEL = 10

FLAG_NAMES = (
    "string_encryption",
    "variable_renaming",
    "control_flow_obfuscation",
    "dead_code_injection",
    "anti_debug",
    "vm_protection",
    "bytecode_encryption",
    "custom_encryption",
)


class ObfuscationConfig(BaseModel):
    """Protections to apply and how hard to apply them."""

    level: int = Field(default=5, description="Intensity, clamped into 1-10")
    string_encryption: bool = Field(default=True, description="Encrypt string literals")
    variable_renaming: bool = Field(default=True, description="Scramble declared identifiers")
    control_flow_obfuscation: bool = Field(default=True, description="Wrap conditions in opaque predicates")
    dead_code_injection: bool = Field(default=True, description="Insert unreachable junk statements")
    anti_debug: bool = Field(default=True, description="Prepend debugger detection guards")
    vm_protection: bool = Field(default=True, description="Wrap the program in an encoded loader")
    bytecode_encryption: bool = Field(default=True, description="Emit the loader payload as a byte list")
    custom_encryption: bool = Field(default=True, description="Add a shift, base64 and reverse layer")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible output")

    model_config = {"frozen": True}

    @field_validator("level", mode="before")
    @classmethod
    def clamp_level(cls, v) -> int:
        """Clamp out-of-range levels instead of rejecting them."""
        return max(MIN_LEVEL, min(MAX_LEVEL, int(v)))

    @property
    def enabled_flags(self) -> list[str]:
        return [name for name in FLAG_NAMES if getattr(self, name)]
