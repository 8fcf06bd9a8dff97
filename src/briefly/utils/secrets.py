"""Credential lookup backed by Google Cloud Secret Manager."""

from functools import lru_cache

from google.api_core.exceptions import NotFound
from google.cloud import secretmanager

from briefly.utils.logging import get_logger

logger = get_logger(__name__)


class SecretStore:
    """Reads named secrets from one project, remembering what it has read."""

    def __init__(self, project_id: str) -> None:
        self._project_id = project_id
        self._client = secretmanager.SecretManagerServiceClient()
        self._values: dict[str, str | None] = {}

    def _path(self, secret_id: str) -> str:
        return self._client.secret_version_path(self._project_id, secret_id, "latest")

    def lookup(self, secret_id: str) -> str | None:
        """Return the latest version of an optional secret, or None if it is absent."""
        if secret_id in self._values:
            return self._values[secret_id]

        logger.info("Reading secret", secret_id=secret_id, project_id=self._project_id)
        try:
            response = self._client.access_secret_version(request={"name": self._path(secret_id)})
        except NotFound:
            logger.info("Secret not provisioned", secret_id=secret_id)
            value = None
        else:
            value = response.payload.data.decode("UTF-8").strip() or None

        self._values[secret_id] = value
        return value


@lru_cache(maxsize=4)
def get_secret_store(project_id: str) -> SecretStore:
    """Get the shared SecretStore for a project."""
    return SecretStore(project_id)
