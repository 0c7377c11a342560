"""
全局配置
处理限制、缓存和日志相关的默认值，可通过 IMAGE_ALCHEMY_* 环境变量覆盖
"""
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

from loguru import logger

ENV_PREFIX = "IMAGE_ALCHEMY_"

# duotone filter colours used when start/stop are not given
DEFAULT_DUOTONE_START = (200, 54, 88, 255)
DEFAULT_DUOTONE_STOP = (216, 231, 79, 255)


@dataclass(frozen=True)
class Config:
    max_width: int = 16383
    max_height: int = 16383
    max_pixels: int = 71_000_000
    max_output_pixels: int = 71_000_000
    max_pages: int = 256
    default_quality: int = 85
    cache_items: int = 8
    cache_memory_mb: int = 256
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a config from IMAGE_ALCHEMY_<FIELD> variables, keeping defaults for bad values"""
        environ = os.environ if environ is None else environ
        config = cls()
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = getattr(config, f.name)
            if isinstance(default, int):
                try:
                    value = int(raw)
                except ValueError:
                    logger.warning(f"[Config] Ignoring {ENV_PREFIX}{f.name.upper()}={raw!r}: not an integer")
                    continue
                if value <= 0:
                    logger.warning(f"[Config] Ignoring {ENV_PREFIX}{f.name.upper()}={raw!r}: must be positive")
                    continue
                overrides[f.name] = value
            elif f.name == "log_file":
                overrides[f.name] = raw or None
            else:
                overrides[f.name] = raw
        if overrides:
            logger.debug(f"[Config] Applied env overrides: {', '.join(sorted(overrides))}")
        return replace(config, **overrides)


DEFAULT_CONFIG = Config()
