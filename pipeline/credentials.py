"""
Credential Store

Read-only lookup of external-service credentials by service name.
Adapters and the embedding generator receive a store explicitly instead of
reaching for a global client.

Backends:
- InMemoryCredentialStore: dict-backed, used by tests
- EnvCredentialStore: reads <SERVICE>_API_KEY environment variables
- JsonCredentialStore: reads a JSON file (CATALYST_CREDENTIALS_PATH)
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from pipeline.models import Credential
from utils.datetime_utils import parse_datetime

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Lookup interface consumed by every adapter."""

    def lookup(self, service_name: str) -> Optional[Credential]:
        ...

    def all(self) -> List[Credential]:
        ...


class InMemoryCredentialStore:
    """Credential store backed by a dict."""

    def __init__(self, credentials: Optional[Iterable[Credential]] = None):
        self._credentials: Dict[str, Credential] = {}
        for cred in credentials or []:
            self.add(cred)

    def add(self, credential: Credential) -> None:
        self._credentials[credential.service_name] = credential

    def lookup(self, service_name: str) -> Optional[Credential]:
        return self._credentials.get(service_name)

    def all(self) -> List[Credential]:
        return list(self._credentials.values())


class EnvCredentialStore:
    """
    Credential store reading `<SERVICE>_API_KEY` environment variables.

    Optional companions: `<SERVICE>_RATE_LIMIT`, `<SERVICE>_RATE_WINDOW`,
    `<SERVICE>_EXPIRES_AT` (ISO date).
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    @staticmethod
    def _prefix(service_name: str) -> str:
        return service_name.upper().replace("-", "_")

    def lookup(self, service_name: str) -> Optional[Credential]:
        prefix = self._prefix(service_name)
        api_key = self._environ.get(f"{prefix}_API_KEY")
        if not api_key:
            return None

        rate_limit = self._environ.get(f"{prefix}_RATE_LIMIT")
        return Credential(
            service_name=service_name,
            api_key=api_key,
            rate_limit=int(rate_limit) if rate_limit else None,
            rate_window=self._environ.get(f"{prefix}_RATE_WINDOW"),
            expires_at=parse_datetime(self._environ.get(f"{prefix}_EXPIRES_AT")),
        )

    def all(self) -> List[Credential]:
        services = [
            key[: -len("_API_KEY")].lower()
            for key in self._environ
            if key.endswith("_API_KEY")
        ]
        return [c for c in (self.lookup(s) for s in services) if c is not None]


class JsonCredentialStore(InMemoryCredentialStore):
    """
    Credential store loaded from a JSON file.

    Format:
        {"credentials": [{"service_name": "sec_api", "api_key": "...",
                          "rate_limit": 10, "rate_window": "second",
                          "expires_at": "2025-06-01"}]}
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.warning(f"Credentials file not found: {self.path}")
            return

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        for entry in data.get("credentials", []):
            self.add(Credential(
                service_name=entry["service_name"],
                api_key=entry["api_key"],
                rate_limit=entry.get("rate_limit"),
                rate_window=entry.get("rate_window"),
                expires_at=parse_datetime(entry.get("expires_at")),
            ))
        logger.info(f"Loaded {len(self._credentials)} credentials from {self.path}")


def build_credential_store() -> CredentialStore:
    """Pick the credential backend from the environment."""
    path = os.environ.get("CATALYST_CREDENTIALS_PATH")
    if path:
        return JsonCredentialStore(path)
    return EnvCredentialStore()
