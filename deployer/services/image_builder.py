"""
Image Builder
=============
Registry login, image build and image push through the Docker SDK.

NEVER pushes on its own: the build stage calls ``push`` only after the
vulnerability gate has passed.

Docker errors are translated at this boundary:
    login failure → CredentialError
    build failure → ImageBuildError
    push failure  → ImageBuildError
"""
import logging
from typing import Optional

import docker
from docker.errors import APIError, BuildError, DockerException

from deployer.core.errors import CredentialError, ImageBuildError

logger = logging.getLogger(__name__)


class ImageBuilder:
    """
    Thin wrapper around a docker client for one image reference.

    The client is created lazily so construction never needs a daemon.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def login(self, username: str, password: str, registry: Optional[str] = None) -> None:
        if not username or not password:
            raise CredentialError("Registry credentials are missing")
        try:
            self.client.login(username=username, password=password, registry=registry)
        except (APIError, DockerException) as e:
            raise CredentialError(
                "Registry login failed",
                details={"registry": registry or "docker.io", "error": type(e).__name__},
            ) from e
        logger.info("Logged in to registry %s as %s", registry or "docker.io", username)

    def build(self, context_path: str, image_ref: str, dockerfile: str = "Dockerfile") -> str:
        """
        Build ``image_ref`` from ``context_path``. Returns the image id.
        """
        logger.info("Building image %s from %s", image_ref, context_path)
        try:
            image, build_logs = self.client.images.build(
                path=context_path,
                dockerfile=dockerfile,
                tag=image_ref,
                rm=True,
                pull=False,
            )
        except BuildError as e:
            tail = [c.get("stream", "").strip() for c in (e.build_log or []) if isinstance(c, dict)]
            raise ImageBuildError(
                f"Image build failed: {e.msg}",
                details={"image": image_ref, "log_tail": [l for l in tail if l][-20:]},
            ) from e
        except (APIError, DockerException) as e:
            raise ImageBuildError(
                f"Docker API error during build: {e}",
                details={"image": image_ref},
            ) from e

        for chunk in build_logs:
            line = chunk.get("stream", "").strip() if isinstance(chunk, dict) else ""
            if line:
                logger.debug("[build] %s", line)

        logger.info("Built image %s (%s)", image_ref, image.short_id)
        return image.id

    def push(self, image_ref: str) -> None:
        """
        Push ``image_ref``. The SDK reports push errors inside the stream,
        so every status line is inspected.
        """
        repository, _, tag = image_ref.rpartition(":")
        logger.info("Pushing image %s", image_ref)
        try:
            stream = self.client.images.push(repository, tag=tag, stream=True, decode=True)
            for line in stream:
                if isinstance(line, dict) and line.get("error"):
                    raise ImageBuildError(
                        f"Image push failed: {line['error']}",
                        details={"image": image_ref},
                    )
        except (APIError, DockerException) as e:
            raise ImageBuildError(
                f"Docker API error during push: {e}",
                details={"image": image_ref},
            ) from e
        logger.info("Pushed image %s", image_ref)
