from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rnn_classification.exceptions import ConfigError

# ----------------------------------------------------------------------
# Environment + discovery defaults
# ----------------------------------------------------------------------

# Example: RNN_CLASSIFICATION_ENV, RNN_CLASSIFICATION_TRAINING__MAX_EPOCHS, ...
ENV_PREFIX = "RNN_CLASSIFICATION_"
ENV_ENV_NAME = f"{ENV_PREFIX}ENV"
ENV_CONFIG_PATH = f"{ENV_PREFIX}CONFIG_PATH"

DEFAULT_ENV = os.getenv(ENV_ENV_NAME, "dev").lower()
DEFAULT_CONFIG_FILENAMES = ("config.yaml", "config.yml")

RNN_TYPES: tuple[str, ...] = ("RNN", "LSTM", "GRU")


# ----------------------------------------------------------------------
# Section models
# ----------------------------------------------------------------------


class PathsConfig(BaseModel):
    """Where the toy dataset, the output file and the weights live."""

    model_config = ConfigDict(frozen=True)

    base_dir: Path = Path(".")
    data_dir: Path = Path(".")
    output_dir: Path = Path(".")
    dataset_name: str = Field(
        "dataset",
        description="Name of the data loader; weights go to <output_dir>/<dataset_name>/weights.",
    )

    def resolve(self, base: Path | None = None) -> PathsConfig:
        """Return a copy of this config with all paths made absolute."""
        base_dir = Path(base) if base is not None else self.base_dir
        return PathsConfig(
            base_dir=base_dir,
            data_dir=(base_dir / self.data_dir).resolve(),
            output_dir=(base_dir / self.output_dir).resolve(),
            dataset_name=self.dataset_name,
        )

    @property
    def weights_dir(self) -> Path:
        return self.output_dir / self.dataset_name / "weights"


class DataConfig(BaseModel):
    """Shape and sampling parameters of the synthetic time-series dataset."""

    model_config = ConfigDict(frozen=True)

    n_events: int = Field(10000, ge=2, description="Events generated per class.")
    ntime: int = Field(10, gt=0, description="Number of time steps per event.")
    ndim: int = Field(30, gt=0, description="Feature vector width per time step.")
    n_draws: int = Field(1000, gt=0, description="Gaussian draws filled per histogram.")
    noise_std: float = Field(10.0, ge=0.0, description="Std-dev of the additive per-bin noise.")
    hist_low: float = 0.0
    hist_high: float = 10.0
    seed: int | None = Field(
        None,
        description="Generator seed. None draws fresh entropy on every run.",
    )
    file_format: Literal["parquet", "csv", "feather"] = "parquet"

    @model_validator(mode="after")
    def _check_range(self) -> DataConfig:
        if self.hist_high <= self.hist_low:
            raise ValueError("data.hist_high must be greater than data.hist_low.")
        return self

    @property
    def file_name(self) -> str:
        suffix = {"parquet": "parquet", "csv": "csv", "feather": "feather"}[self.file_format]
        return f"time_data_t{self.ntime}_d{self.ndim}.{suffix}"


class SplitConfig(BaseModel):
    """Train/test partitioning of the signal and background trees."""

    model_config = ConfigDict(frozen=True)

    train_fraction: float = Field(
        0.8,
        gt=0.0,
        lt=1.0,
        description="Fraction of n_events per class used for training (nTrain_*).",
    )
    split_mode: Literal["Random", "Alternate", "Block"] = "Random"
    split_seed: int = Field(100, ge=0)
    norm_mode: Literal["None", "NumEvents", "EqualNumEvents"] = "NumEvents"


class NetworkConfig(BaseModel):
    """Layer layout shared by every booked recurrent method."""

    model_config = ConfigDict(frozen=True)

    rnn_units: int = Field(10, gt=0)
    remember_state: bool = False
    return_sequence: bool = True
    dense_units: int = Field(64, gt=0)
    dense_activation: str = "TANH"


class TrainingConfig(BaseModel):
    """Training strategy and method-level options for the deep-learning methods."""

    model_config = ConfigDict(frozen=True)

    learning_rate: float = Field(1e-3, gt=0.0)
    momentum: float = Field(0.0, ge=0.0)
    repetitions: int = Field(1, gt=0)
    convergence_steps: int = Field(5, gt=0)
    batch_size: int = Field(100, gt=0)
    test_repetitions: int = Field(1, gt=0)
    weight_decay: float = Field(1e-2, ge=0.0)
    regularization: Literal["None", "L1", "L2"] = "None"
    max_epochs: int = Field(20, gt=0)
    optimizer: Literal["ADAM", "SGD", "RMSPROP", "ADAGRAD", "ADADELTA"] = "ADAM"
    drop_config: str = "0.0+0.+0.+0."
    error_strategy: Literal["CROSSENTROPY", "SUMOFSQUARES"] = "CROSSENTROPY"
    weight_initialization: Literal["XAVIER", "XAVIERUNIFORM", "GAUSS", "UNIFORM"] = "XAVIERUNIFORM"
    validation_size: float = Field(0.2, gt=0.0)
    random_seed: int = Field(1234, ge=0)


class RuntimeConfig(BaseModel):
    """Thread pool and device selection."""

    model_config = ConfigDict(frozen=True)

    num_threads: int = Field(
        0,
        description="0 = all cores, >0 = that many threads, <0 = single-threaded.",
    )
    device: Literal["auto", "cpu", "cuda"] = "auto"


class MethodsConfig(BaseModel):
    """Which methods get booked."""

    model_config = ConfigDict(frozen=True)

    use_type: int = Field(
        1,
        description="0 = RNN, 1 = LSTM, 2 = GRU, anything else = all three.",
    )
    use_dnn: bool = Field(False, description="Also book a dense network baseline.")
    use_bdt: bool = Field(False, description="Also book a gradient-boosted trees baseline.")

    def enabled_rnn_types(self) -> list[str]:
        if 0 <= self.use_type < len(RNN_TYPES):
            return [RNN_TYPES[self.use_type]]
        return list(RNN_TYPES)


class MlflowConfig(BaseModel):
    """Optional MLflow tracking."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    tracking_uri: str | None = None
    experiment_name: str | None = None
    run_name: str | None = None
    log_artifacts: bool = True


# ----------------------------------------------------------------------
# Top-level settings
# ----------------------------------------------------------------------


class AppConfig(BaseSettings):
    """Top-level configuration.

    Values are read from (in order of precedence):

    1. Keyword arguments (e.g. the contents of a YAML file).
    2. Environment variables prefixed with RNN_CLASSIFICATION_.
    3. A .env file, if present.
    4. Field defaults (the reference run's values).

    Nested fields are overridden with ``__``:

        RNN_CLASSIFICATION_TRAINING__MAX_EPOCHS=5
        RNN_CLASSIFICATION_DATA__N_EVENTS=2000
        RNN_CLASSIFICATION_RUNTIME__NUM_THREADS=4

    A YAML file may be flat or hold ``dev``/``prod`` profiles; the active
    profile is picked by RNN_CLASSIFICATION_ENV (or the ``env`` argument).
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    _source_path: Path | None = PrivateAttr(default=None)
    _loaded_env: str | None = PrivateAttr(default=None)

    env: str = "dev"
    log_level: str = "INFO"
    experiment_name: str = "TMVAClassification"
    write_output_file: bool = True

    paths: PathsConfig = PathsConfig()
    data: DataConfig = DataConfig()
    split: SplitConfig = SplitConfig()
    network: NetworkConfig = NetworkConfig()
    training: TrainingConfig = TrainingConfig()
    runtime: RuntimeConfig = RuntimeConfig()
    methods: MethodsConfig = MethodsConfig()
    mlflow: MlflowConfig = MlflowConfig()

    @model_validator(mode="after")
    def _check_invariants(self) -> AppConfig:
        if self.env.lower() in {"prod", "production"} and self.log_level.upper() == "DEBUG":
            raise ValueError(
                "In production environment, log_level should not be DEBUG. "
                "Use INFO or higher."
            )
        if self.training.batch_size > self.data.n_events * 2:
            raise ValueError("training.batch_size is larger than the whole dataset.")
        return self

    def resolved_paths(self) -> PathsConfig:
        return self.paths.resolve(self.paths.base_dir)

    def to_dict(self, *, include_private: bool = False) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        if include_private:
            data["_source_path"] = str(self._source_path) if self._source_path else None
            data["_loaded_env"] = self._loaded_env
        return data

    def to_yaml(self, path: Path | str, *, include_private: bool = False) -> None:
        """Write the effective configuration next to the run's outputs."""
        target = Path(path)
        target.write_text(
            yaml.safe_dump(self.to_dict(include_private=include_private), sort_keys=False),
            encoding="utf-8",
        )


# ----------------------------------------------------------------------
# Loading + caching
# ----------------------------------------------------------------------

_config_cache: AppConfig | None = None


def _discover_default_config_path() -> Path | None:
    """Return RNN_CLASSIFICATION_CONFIG_PATH, ./config.yaml or ./config.yml."""
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        # A missing explicit path is reported by load_config.
        return Path(env_path)

    cwd = Path.cwd()
    for name in DEFAULT_CONFIG_FILENAMES:
        candidate = cwd / name
        if candidate.exists():
            return candidate

    return None


def _select_profile_from_yaml(
    loaded: Mapping[str, Any],
    effective_env: str,
) -> Mapping[str, Any]:
    section = loaded.get(effective_env)
    if isinstance(section, Mapping):
        return section
    return loaded


def load_config(
    config_path: str | Path | None = None,
    *,
    env: str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load and validate the application configuration.

    Parameters
    ----------
    config_path:
        Optional YAML file. If omitted, discovery is attempted.
    env:
        Profile name ('dev', 'prod', ...). Defaults to RNN_CLASSIFICATION_ENV or 'dev'.
    overrides:
        Top-level section overrides applied on top of the file, e.g.
        ``{"methods": {"use_type": 3}}`` from the command line.

    Raises
    ------
    ConfigError
        If the file does not exist, cannot be parsed, or fails validation.
    """
    effective_env = (env or DEFAULT_ENV).lower()
    config_data: dict[str, Any] = {}

    path: Path | None
    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_default_config_path()

    if path is not None:
        if not path.exists():
            raise ConfigError(
                f"Config file not found: {path}",
                code="config_file_not_found",
                context={"config_path": str(path), "env": effective_env},
                location="rnn_classification.config.load_config",
            )

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(
                f"Failed to read config file: {path}",
                code="config_read_error",
                cause=exc,
                context={"config_path": str(path), "env": effective_env},
                location="rnn_classification.config.load_config",
            ) from exc

        try:
            loaded = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(
                f"Failed to parse YAML config file: {path}",
                code="config_parse_error",
                cause=exc,
                context={"config_path": str(path), "env": effective_env},
                location="rnn_classification.config.load_config",
            ) from exc

        if not isinstance(loaded, Mapping):
            raise ConfigError(
                f"Top-level config in {path} must be a mapping, got {type(loaded)}",
                code="config_structure_error",
                context={"config_path": str(path), "env": effective_env},
                location="rnn_classification.config.load_config",
            )

        config_data.update(dict(_select_profile_from_yaml(loaded, effective_env)))
        if effective_env in loaded:
            config_data.setdefault("env", effective_env)

    for key, value in (overrides or {}).items():
        if isinstance(value, Mapping) and isinstance(config_data.get(key), Mapping):
            config_data[key] = {**config_data[key], **value}
        else:
            config_data[key] = value

    try:
        cfg = AppConfig(**config_data)
    except ValidationError as exc:
        raise ConfigError(
            "Configuration validation failed",
            code="config_validation_error",
            cause=exc,
            context={
                "config_path": str(path) if path is not None else None,
                "env": effective_env,
                "errors": exc.errors(),
            },
            location="rnn_classification.config.load_config",
        ) from exc

    cfg._source_path = path
    cfg._loaded_env = effective_env

    return cfg


def get_config(
    config_path: str | Path | None = None,
    *,
    env: str | None = None,
    force_reload: bool = False,
) -> AppConfig:
    """Return the cached AppConfig, loading it on first use.

        from rnn_classification.config import get_config

        cfg = get_config()
        cfg.methods.enabled_rnn_types()
    """
    global _config_cache

    if _config_cache is None or force_reload:
        _config_cache = load_config(config_path=config_path, env=env)

    return _config_cache


def get_paths(
    config_path: str | Path | None = None,
    *,
    env: str | None = None,
    force_reload: bool = False,
) -> PathsConfig:
    cfg = get_config(config_path=config_path, env=env, force_reload=force_reload)
    return cfg.resolved_paths()
