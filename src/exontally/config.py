"""Configuration management for exontally.

Settings come from built-in defaults, an optional TOML file and, last,
command-line flags. The TOML file mirrors the attrs classes below:

    [counting]
    read_length = 100
    quality_tag = "AS"

    [parallel]
    max_workers = 8
    timeout = 3600

    [output]
    delimiter = ","

Example:
    >>> from exontally.config import Config
    >>> config = Config.load("exontally.toml")
    >>> config.counting.read_length
    100
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import attrs

# =============================================================================
# Default Configuration Values
# =============================================================================

# Counting defaults
DEFAULT_READ_LENGTH = 100
DEFAULT_QUALITY_TAG = "AS"
DEFAULT_GOOD_MAPQ = 30
DEFAULT_SAMPLE_PATTERN = "*.bam"
DEFAULT_SAMPLE_SEPARATOR = r"[._]"

# Parallel processing defaults (None = one worker per core)
DEFAULT_MAX_WORKERS = None
DEFAULT_BACKEND = "processes"
DEFAULT_TIMEOUT = None
DEFAULT_GENE_BATCH_SIZE = 2000

# Output defaults
DEFAULT_DELIMITER = "\t"

VALID_BACKENDS = ("serial", "threads", "processes")
VALID_DELIMITERS = ("\t", ",")


# =============================================================================
# Configuration Classes
# =============================================================================


@attrs.define
class CountingConfig:
    """Configuration for read counting and QC statistics.

    Attributes:
        read_length: Sequencing read length, used as a width cut-point.
        quality_tag: Auxiliary BAM tag tabulated as the secondary quality.
        good_mapq: Minimum mapping quality for the good-alignments view.
        min_mapq: Reads below this mapping quality are not counted.
        primary_only: Drop secondary and supplementary alignments.
        sample_pattern: Glob used to discover alignment files.
        sample_separator: Regex splitting file names into sample tokens.
    """

    read_length: int = DEFAULT_READ_LENGTH
    quality_tag: str = DEFAULT_QUALITY_TAG
    good_mapq: int = DEFAULT_GOOD_MAPQ
    min_mapq: int = 0
    primary_only: bool = False
    sample_pattern: str = DEFAULT_SAMPLE_PATTERN
    sample_separator: str = DEFAULT_SAMPLE_SEPARATOR

    def validate(self) -> None:
        """Validate counting settings.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.read_length <= 0:
            raise ValueError(f"read_length must be positive, got {self.read_length}")
        if len(self.quality_tag) != 2:
            raise ValueError(f"quality_tag must be a two-letter BAM tag, got {self.quality_tag!r}")
        if self.good_mapq < 0 or self.min_mapq < 0:
            raise ValueError("Mapping quality thresholds must be non-negative")


@attrs.define
class ParallelConfig:
    """Configuration for parallel processing.

    Attributes:
        max_workers: Maximum number of parallel workers (None = CPU count).
        backend: Execution backend (serial, threads, processes).
        timeout: Per-sample timeout in seconds (None = unlimited).
        gene_batch_size: Genes per intron-profiling task.
    """

    max_workers: int | None = DEFAULT_MAX_WORKERS
    backend: str = DEFAULT_BACKEND
    timeout: float | None = DEFAULT_TIMEOUT
    gene_batch_size: int = DEFAULT_GENE_BATCH_SIZE

    def validate(self) -> None:
        """Validate parallel settings.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.backend not in VALID_BACKENDS:
            raise ValueError(f"backend must be one of {VALID_BACKENDS}, got {self.backend!r}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.gene_batch_size < 1:
            raise ValueError("gene_batch_size must be >= 1")


@attrs.define
class OutputConfig:
    """Configuration for output tables.

    Attributes:
        delimiter: Column delimiter for all written tables.
        cache_dir: Directory for cached per-sample results (None = no cache).
    """

    delimiter: str = DEFAULT_DELIMITER
    cache_dir: Path | None = None

    def validate(self) -> None:
        """Validate output settings.

        Raises:
            ValueError: If the delimiter is unsupported.
        """
        if self.delimiter not in VALID_DELIMITERS:
            raise ValueError(f"delimiter must be tab or comma, got {self.delimiter!r}")

    @property
    def extension(self) -> str:
        """File extension matching the delimiter."""
        return ".csv" if self.delimiter == "," else ".tsv"


@attrs.define
class Config:
    """Main configuration container for exontally.

    Attributes:
        counting: Counting and statistics configuration.
        parallel: Parallel processing configuration.
        output: Output configuration.
    """

    counting: CountingConfig = attrs.Factory(CountingConfig)
    parallel: ParallelConfig = attrs.Factory(ParallelConfig)
    output: OutputConfig = attrs.Factory(OutputConfig)

    @classmethod
    def load(cls, path: Path | str | None = None) -> Config:
        """Load configuration from a TOML file.

        Args:
            path: Path to configuration file. If None, returns defaults.

        Returns:
            Loaded and validated configuration object.

        Raises:
            FileNotFoundError: If configuration file doesn't exist.
            ValueError: If configuration file is invalid.
        """
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid configuration file {path}: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build a configuration from nested dictionaries.

        Raises:
            ValueError: On unknown sections or keys, or invalid values.
        """
        sections = {
            "counting": CountingConfig,
            "parallel": ParallelConfig,
            "output": OutputConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {}
        for name, section_cls in sections.items():
            values = dict(data.get(name, {}))
            fields = {f.name for f in attrs.fields(section_cls)}
            bad = set(values) - fields
            if bad:
                raise ValueError(f"Unknown keys in [{name}]: {', '.join(sorted(bad))}")
            if name == "output" and values.get("cache_dir") is not None:
                values["cache_dir"] = Path(values["cache_dir"])
            kwargs[name] = section_cls(**values)

        config = cls(**kwargs)
        config.validate()
        return config

    def validate(self) -> None:
        """Validate all sections."""
        self.counting.validate()
        self.parallel.validate()
        self.output.validate()

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        return attrs.asdict(self)
