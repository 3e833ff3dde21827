# src/token_lifecycle/stores/base.py

from abc import ABC, abstractmethod
from typing import List

from ..credential import Credential, CredentialUpdate


class CredentialStore(ABC):
    """
    Uniform read/write interface over one backend holding Google OAuth credentials.

    Subclasses must set NAME, a stable identifier used in single-flight keys and
    log lines, and implement read/write.
    """

    NAME: str = None

    @property
    def name(self) -> str:
        return self.NAME

    @abstractmethod
    async def read(self, subject_key: str) -> Credential:
        """
        Return the credential stored under subject_key.

        Raises:
            CredentialNotFoundError: No credential under this key
            StoreUnavailableError: The backend could not be queried
        """

    @abstractmethod
    async def write(self, subject_key: str, update: CredentialUpdate) -> None:
        """
        Merge update into the stored credential.

        Only non-None fields of the update are written. Must be durable before
        returning. Raises on failure; the caller decides how to classify it.
        """

    async def list_refreshable(self) -> List[Credential]:
        """Credentials in this store that carry a refresh token."""
        raise NotImplementedError(f"{self.__class__.__name__} cannot be enumerated")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
