"""Configuration loading and logging setup."""

import sys
from pathlib import Path

from loguru import logger
from omegaconf import DictConfig, OmegaConf

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "conf" / "config.yaml"


def load_config(
    path: Path | None = None, overrides: list[str] | None = None
) -> DictConfig:
    """
    Load configuration from YAML file.

    Args:
        path: Config file to load (defaults to conf/config.yaml)
        overrides: Dotted overrides such as "RETRIEVAL.local_top_k=3"

    Returns:
        Merged configuration
    """
    cfg = OmegaConf.load(path or DEFAULT_CONFIG_PATH)
    if overrides:
        cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(overrides))
    return cfg


def setup_logging(cfg: DictConfig, log_name: str = "kgrag.log") -> None:
    """Configure logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=cfg.LOGGING.format,
        level=cfg.LOGGING.level,
    )

    logs_dir = cfg.PATHS.get("logs_dir")
    if logs_dir:
        log_dir = Path(logs_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / log_name,
            format=cfg.LOGGING.format,
            level="DEBUG",
            rotation="10 MB",
        )
