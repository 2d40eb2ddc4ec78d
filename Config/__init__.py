"""
Configuration package for the fuel ledger.

Provides centralized access to ledger constants and environment configuration.

Usage:
    from Config import constants_core as core
    print(core.VOLUME_TOLERANCE)

    from Config.environment import env
    print(f"Running in {env.env_name} mode")
"""

# Auto-load environment on package import
from Config.environment import env, is_docker, env_name

from Config import constants_core

__all__ = [
    'env',
    'is_docker',
    'env_name',
    'constants_core',
]
