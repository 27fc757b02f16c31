from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="QC_",
    )

    # Monte Carlo simulation
    num_paths: int = 10000
    seed: int | None = None
    max_workers: int = 1

    # Analysis parameters
    risk_free_rate: float = 0.02
    var_confidence: float = 0.05

    # Jump overlay defaults
    jump_intensity: float = 0.02
    jump_mean: float = 0.0
    jump_std: float = 0.05

    # Implied volatility solver
    iv_initial_guess: float = 0.2
    iv_tolerance: float = 1e-4
    iv_max_iterations: int = 100
    iv_min_vol: float = 0.001
    iv_max_vol: float = 5.0

    # Logging
    log_dir: str = "logs"
    log_file: str = "quantcore.log"
