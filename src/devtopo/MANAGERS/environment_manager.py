"""
Managers for handling container environment variables and env file resolution.
"""
import os
from typing import Dict, List

from dotenv import dotenv_values

from ..UTILS.logger import get_logger

logger = get_logger(__name__)


class EnvironmentManager:
    """
    Merges env files and explicitly declared variables into the environment a
    container is created with. The host environment is never inherited.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to env files.
        """
        self.base_dir = base_dir

    def resolve_path(self, env_file: str) -> str:
        return os.path.join(self.base_dir, env_file)

    def get_merged_environment(self,
                               explicit_env: Dict[str, str],
                               env_files: List[str]) -> Dict[str, str]:
        """
        Merges variables from env files (later files override earlier ones) and
        explicit definitions, which override everything.

        :param explicit_env: Explicitly defined environment variables.
        :param env_files: Paths to env files; missing files are skipped with a warning.
        :return: The merged environment.
        """
        merged: Dict[str, str] = {}
        for env_file in env_files:
            file_path = self.resolve_path(env_file)
            if not os.path.exists(file_path):
                logger.warning("Env file %s not found, skipping.", file_path)
                continue
            for key, value in dotenv_values(file_path).items():
                merged[key] = "" if value is None else value

        merged.update(explicit_env)
        return merged
