"""
Builders for packaging local build contexts into the archives the engine builds from.
"""
import fnmatch
import io
import os
import tarfile
from typing import BinaryIO, List, Optional

from ..MODELS.service_definition import BuildConfig

DEFAULT_IGNORES = ["node_modules", ".git", "**/node_modules", "**/.git"]


class ImageBuilder:
    """
    Packages a build context directory as a gzip-compressed tar stream,
    skipping paths excluded by ``.dockerignore``.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the ImageBuilder.

        :param base_dir: The base directory for resolving relative build contexts.
        """
        self.base_dir = base_dir

    def resolve_context(self, build: BuildConfig) -> str:
        return os.path.abspath(os.path.join(self.base_dir, build.context))

    def dockerfile_path(self, build: BuildConfig) -> str:
        return os.path.join(self.resolve_context(build), build.dockerfile)

    def read_ignore_patterns(self, context_dir: str) -> List[str]:
        """
        Reads ``.dockerignore`` patterns from the context, on top of the defaults.
        Negated patterns (``!keep``) re-include previously excluded paths.
        """
        patterns = list(DEFAULT_IGNORES)
        ignore_file = os.path.join(context_dir, ".dockerignore")
        if os.path.exists(ignore_file):
            with open(ignore_file, "r") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#"):
                        patterns.append(line.rstrip("/"))
        return patterns

    @staticmethod
    def is_ignored(rel_path: str, patterns: List[str]) -> bool:
        ignored = False
        for pattern in patterns:
            negate = pattern.startswith("!")
            if negate:
                pattern = pattern[1:]
            pattern = pattern.lstrip("/")
            if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(rel_path, pattern + "/*"):
                ignored = not negate
        return ignored

    def package_context(self, build: BuildConfig, patterns: Optional[List[str]] = None) -> BinaryIO:
        """
        Creates the build archive for a service.

        :param build: The build definition of the service.
        :param patterns: Ignore patterns; read from ``.dockerignore`` when omitted.
        :return: A rewound file object holding the ``.tar.gz`` archive.
        :raises FileNotFoundError: If the context or its Dockerfile does not exist.
        """
        context_dir = self.resolve_context(build)
        if not os.path.isdir(context_dir):
            raise FileNotFoundError(f"Build context not found at {context_dir}")
        if not os.path.isfile(self.dockerfile_path(build)):
            raise FileNotFoundError(f"Dockerfile not found at {self.dockerfile_path(build)}")
        if patterns is None:
            patterns = self.read_ignore_patterns(context_dir)

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            for root, dirs, files in os.walk(context_dir):
                rel_root = os.path.relpath(root, context_dir)
                rel_root = "" if rel_root == "." else rel_root.replace(os.sep, "/")
                # Prune ignored directories so they are never walked
                dirs[:] = sorted(
                    d for d in dirs
                    if not self.is_ignored(f"{rel_root}/{d}" if rel_root else d, patterns)
                )
                for name in sorted(files):
                    rel_path = f"{rel_root}/{name}" if rel_root else name
                    # The Dockerfile is always sent, even if ignored
                    if rel_path != build.dockerfile and self.is_ignored(rel_path, patterns):
                        continue
                    archive.add(os.path.join(root, name), arcname=rel_path, recursive=False)
        buffer.seek(0)
        return buffer
