"""Configuration for the TeamTrack client."""

from pathlib import Path

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Local configuration for this session."""

    user_id: str
    firebase_credentials_path: Path
    export_dir: Path = Path("exports")
    heartbeat_interval_seconds: int = Field(default=60, gt=0)
    late_hour: int = Field(default=9, ge=0, le=23)
    due_soon_days: int = Field(default=7, gt=0)
    urgent_limit: int = Field(default=3, gt=0)


def load_config(path: Path) -> Config:
    """Load configuration from a JSON file."""
    return Config.model_validate_json(path.read_text())
