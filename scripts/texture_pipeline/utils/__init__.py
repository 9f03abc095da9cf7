"""
Utility modules for image codec work and deployment.
"""

from .image import ImageUtils
from .deploy import Deployer, DeployTarget, load_deploy_config, parse_deploy_config

__all__ = [
    "ImageUtils",
    "Deployer",
    "DeployTarget",
    "load_deploy_config",
    "parse_deploy_config",
]
