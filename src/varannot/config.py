"""Configuration for the annotation step, read from environment variables."""

import os

from pydantic import BaseModel


class VepConfig(BaseModel):
    perl_path: str = "perl"
    script_path: str = ""
    cache_dir: str = ""
    cache_version: str = ""
    species: str = "homo_sapiens"
    fasta: str = ""
    forks: int = 4
    timeout_seconds: float | None = None  # None = wait forever
    input_path: str = "vep_input.txt.gz"
    output_path: str = "vep_output.txt.gz"


class EstimatorConfig(BaseModel):
    sample_size: int = 100
    header_marker: str = "#"


class DatabaseConfig(BaseModel):
    url: str = "sqlite:///varannot.db"
    echo: bool = False


class AppConfig(BaseModel):
    vep: VepConfig = VepConfig()
    estimator: EstimatorConfig = EstimatorConfig()
    database: DatabaseConfig = DatabaseConfig()
    debug: bool = False
    log_level: str = "INFO"


def _optional_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


def _build_config() -> AppConfig:
    """Build config from environment variables."""
    return AppConfig(
        vep=VepConfig(
            perl_path=os.environ.get("VEP_PERL", "perl"),
            script_path=os.environ.get("VEP_PATH", ""),
            cache_dir=os.environ.get("VEP_CACHE_DIR", ""),
            cache_version=os.environ.get("VEP_CACHE_VERSION", ""),
            species=os.environ.get("VEP_SPECIES", "homo_sapiens"),
            fasta=os.environ.get("VEP_FASTA", ""),
            forks=int(os.environ.get("VEP_FORKS", "4")),
            timeout_seconds=_optional_float(os.environ.get("VEP_TIMEOUT")),
            input_path=os.environ.get("VEP_INPUT", "vep_input.txt.gz"),
            output_path=os.environ.get("VEP_OUTPUT", "vep_output.txt.gz"),
        ),
        estimator=EstimatorConfig(
            sample_size=int(os.environ.get("ESTIMATOR_SAMPLE_LINES", "100")),
            header_marker=os.environ.get("ESTIMATOR_HEADER_MARKER", "#"),
        ),
        database=DatabaseConfig(
            url=os.environ.get("DATABASE_URL", "sqlite:///varannot.db"),
            echo=os.environ.get("DB_ECHO", "").lower() in ("1", "true", "yes"),
        ),
        debug=os.environ.get("DEBUG", "").lower() in ("1", "true", "yes"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )


config = _build_config()
