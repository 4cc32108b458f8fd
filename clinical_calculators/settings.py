import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_TABLES_DIR = Path(__file__).parent / "clinical_risk_calculator" / "model_tables"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class CalculatorSettings(BaseModel):
    """Runtime settings for the calculator core.

    Attributes:
        tables_dir: Directory holding models.yaml and the CSV tables
        apply_calibration: Whether post-hoc calibration rules are applied
        log_level: Root log level used by the CLI
    """

    model_config = ConfigDict(frozen=True)

    tables_dir: Path = DEFAULT_TABLES_DIR
    apply_calibration: bool = True
    log_level: str = "WARNING"

    @field_validator("apply_calibration", mode="before")
    @classmethod
    def _normalize_flag(cls, value):
        # 1/0, true/false, yes/no, on/off; anything else fails bool parsing
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level

    @classmethod
    def from_env(cls) -> "CalculatorSettings":
        """Read ``CLINICAL_CALC_*`` variables; raises ValidationError on bad values."""
        tables_dir = os.environ.get("CLINICAL_CALC_TABLES_DIR")
        return cls(
            tables_dir=Path(tables_dir).expanduser().resolve() if tables_dir else DEFAULT_TABLES_DIR,
            apply_calibration=os.environ.get("CLINICAL_CALC_APPLY_CALIBRATION", True),
            log_level=os.environ.get("CLINICAL_CALC_LOG_LEVEL", "WARNING"),
        )


def configure_logging(level: str = "WARNING") -> None:
    """Configure root logging for command-line use."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
