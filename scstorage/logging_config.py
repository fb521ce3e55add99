from __future__ import annotations
import logging
from pathlib import Path
import yaml
from typing import Optional


def configure_logging(config_path: Optional[Path] = None) -> logging.Logger:
    """Configure root logging for applications embedding the storage library.

    Reads `log_level` from the YAML storage config when present and
    reconfigures the root logger with that level. A missing or unparsable
    config falls back to WARNING. Returns the package logger.
    """
    DEFAULT_LOG_LEVEL = logging.WARNING

    cfg_path = Path(config_path) if config_path else Path('data/config/storage_config.yml')
    if cfg_path.exists():
        try:
            with cfg_path.open('r', encoding='utf-8') as _f:
                _cfg = yaml.safe_load(_f) or {}
                _lvl = _cfg.get('log_level') or _cfg.get('LOG_LEVEL')
                if _lvl:
                    DEFAULT_LOG_LEVEL = getattr(logging, str(_lvl).upper())
        except (OSError, yaml.YAMLError, AttributeError):
            DEFAULT_LOG_LEVEL = logging.WARNING

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.basicConfig(level=DEFAULT_LOG_LEVEL, format='%(asctime)s %(levelname)s [%(name)s]: %(message)s')

    logger = logging.getLogger('scstorage')
    logger.info('Log level set to: %s', logging.getLevelName(DEFAULT_LOG_LEVEL))
    return logger
