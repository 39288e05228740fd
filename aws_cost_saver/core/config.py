"""Run configuration for AWS Cost Saver."""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aws_cost_saver.core.exceptions import ConfigurationError


DEFAULT_STATE_FILE = "aws-cost-saver.json"


class TagFilter(BaseModel):
    """A tag key with the values a resource may carry for it.

    An empty ``values`` list matches any value of the key.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Tag key")
    values: Tuple[str, ...] = Field(default=(), description="Accepted tag values")

    def to_native_filter(self) -> Dict:
        """EC2/Auto Scaling style filter sent with list calls."""
        if self.values:
            return {"Name": f"tag:{self.key}", "Values": list(self.values)}
        return {"Name": "tag-key", "Values": [self.key]}

    def to_tagging_filter(self) -> Dict:
        """Resource Groups Tagging API filter."""
        return {"Key": self.key, "Values": list(self.values)}


class TrickOptions(BaseModel):
    """Immutable run-wide options handed to every trick operation."""

    model_config = ConfigDict(frozen=True)

    dry_run: bool = Field(default=False, description="Suppress every mutating call")
    tags: Tuple[TagFilter, ...] = Field(default=(), description="Tag filters scoping resources")

    @property
    def has_tag_filters(self) -> bool:
        return len(self.tags) > 0


class RunSettings(BaseModel):
    """Settings collected from the command line for one invocation."""

    region: Optional[str] = Field(default=None, description="AWS region")
    profile: Optional[str] = Field(default=None, description="AWS shared credentials profile")
    state_file: str = Field(default=DEFAULT_STATE_FILE, description="Local path or s3:// URI")
    no_state_file: bool = False
    overwrite_state_file: bool = False
    only_summary: bool = False
    use_tricks: Tuple[str, ...] = ()
    ignore_tricks: Tuple[str, ...] = ()
    no_default_tricks: bool = False

    @field_validator('region')
    @classmethod
    def validate_region(cls, v: Optional[str]) -> Optional[str]:
        """Validate AWS region format."""
        if v is None:
            return v
        region_pattern = r'^[a-z]{2,3}(-gov)?-[a-z]+-\d+$'
        if not re.match(region_pattern, v):
            raise ValueError(
                f"Invalid AWS region format: {v}. "
                "Expected format: us-east-1, eu-west-1, ap-southeast-3, etc."
            )
        return v

    @field_validator('state_file')
    @classmethod
    def validate_state_file(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("State file location cannot be empty")
        return v


def parse_tag_flags(flags: Iterable[str]) -> Tuple[TagFilter, ...]:
    """Turn ``key`` / ``key=value`` flags into tag filters.

    Repeated keys are merged into one filter. A bare ``key`` matches any value
    and wins over specific values given for the same key.

    Raises:
        ConfigurationError: If a flag has an empty key
    """
    merged: Dict[str, Optional[List[str]]] = {}

    for flag in flags:
        key, sep, value = flag.partition('=')
        key = key.strip()
        if not key:
            raise ConfigurationError(f"Invalid tag filter: {flag!r}, expected key or key=value")

        if not sep:
            merged[key] = None
        elif key not in merged:
            merged[key] = [value]
        elif merged[key] is not None and value not in merged[key]:
            merged[key].append(value)

    return tuple(
        TagFilter(key=key, values=tuple(values or ()))
        for key, values in merged.items()
    )
