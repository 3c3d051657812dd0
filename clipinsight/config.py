import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'pipeline.yaml'

DEFAULT_CONFIG = {
    'paths': {'logs_dir': 'logs'},
    'logging': {'level': 'INFO'},
    'retry': {'max_attempts': 3, 'base_delay_ms': 1000, 'max_delay_ms': 30000, 'multiplier': 2},
    'stages': {'handlers': {}},
}


def load_config(config_path=None) -> dict:
    """Load pipeline configuration from YAML, layered over the built-in defaults.

    The path comes from the argument, then ``PIPELINE_CONFIG``, then
    ``config/pipeline.yaml`` next to the package. A missing file is not an error.
    """
    if config_path is None:
        config_path = os.getenv('PIPELINE_CONFIG') or DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    cfg = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    if not config_path.exists():
        return cfg

    with open(config_path, 'r') as f:
        loaded = yaml.safe_load(f) or {}
    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(cfg.get(section), dict):
            cfg[section].update(values)
        else:
            cfg[section] = values
    return cfg
