"""Configuration management for the voting service."""

from .config import (
    SystemConfig, TreeConfig, ProverConfig, ChainConfig, StoreConfig,
    load_config, save_config
)

__all__ = ['SystemConfig', 'TreeConfig', 'ProverConfig', 'ChainConfig',
           'StoreConfig', 'load_config', 'save_config']
