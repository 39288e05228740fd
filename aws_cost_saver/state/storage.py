"""
Storage backends for state documents, resolved by URI scheme.
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from botocore.exceptions import ClientError

from ..core.exceptions import StorageError, UnsupportedProtocol

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Reads and writes state documents at a URI."""

    @abstractmethod
    def get_protocol(self) -> str:
        """URI scheme handled by this backend (e.g. 'file', 's3')."""
        pass

    @abstractmethod
    def read(self, uri: str) -> str:
        pass

    @abstractmethod
    def write(self, uri: str, content: str) -> None:
        pass

    @abstractmethod
    def exists(self, uri: str) -> bool:
        pass


class LocalStorage(StorageBackend):
    """Local filesystem, for plain paths and ``file://`` URIs."""

    protocol = 'file'

    def get_protocol(self) -> str:
        return LocalStorage.protocol

    def read(self, uri: str) -> str:
        path = self.get_path(uri)
        try:
            return path.read_text(encoding='utf-8')
        except OSError as e:
            raise StorageError(f"Could not read {path}: {e}")

    def exists(self, uri: str) -> bool:
        return self.get_path(uri).exists()

    def write(self, uri: str, content: str) -> None:
        path = self.get_path(uri)
        temp_file = path.with_name(path.name + '.tmp')

        try:
            if path.parent and not path.parent.exists():
                path.parent.mkdir(parents=True, exist_ok=True)

            # Write atomically via temp file
            temp_file.write_text(content, encoding='utf-8')
            temp_file.replace(path)
            logger.info(f"Saved state to {path}")

        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StorageError(f"Could not write {path}: {e}")

    @staticmethod
    def get_path(uri: str) -> Path:
        if uri.lower().startswith('file://'):
            uri = uri[len('file://'):]
        return Path(uri).expanduser()


class S3Storage(StorageBackend):
    """Amazon S3 objects addressed as ``s3://bucket/key``."""

    protocol = 's3'

    def __init__(self, client_factory):
        """
        Args:
            client_factory: ClientFactory providing the 's3' client
        """
        self.client_factory = client_factory

    @property
    def client(self):
        return self.client_factory.client('s3')

    def get_protocol(self) -> str:
        return S3Storage.protocol

    def read(self, uri: str) -> str:
        bucket, key = self.parse_uri(uri)

        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"Could not read content of {uri}: {e}")

        body = response.get('Body') if response else None
        if body is None:
            raise StorageError(f"Could not read content of {uri}")

        return body.read().decode('utf-8')

    def exists(self, uri: str) -> bool:
        bucket, key = self.parse_uri(uri)

        try:
            self.client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code not in ('404', 'NoSuchKey', 'NotFound'):
                raise StorageError(f"Could not check {uri}: {e}")

        return False

    def write(self, uri: str, content: str) -> None:
        bucket, key = self.parse_uri(uri)

        try:
            self.client.put_object(
                Bucket=bucket,
                Key=key,
                Body=content.encode('utf-8'),
                ContentType='application/json',
            )
            logger.info(f"Saved state to {uri}")
        except ClientError as e:
            raise StorageError(f"Could not write to {uri}: {e}")

    @staticmethod
    def parse_uri(uri: str) -> Tuple[str, str]:
        result = urlparse(uri)
        key = result.path.lstrip('/')

        if not result.netloc or not key:
            raise StorageError(
                f"s3 path ({uri}) is not valid, path must be like: "
                "s3://bucket_name/my_dir/object_path.json"
            )

        return result.netloc, key


class StorageResolver:
    """Picks the storage backend for a URI."""

    def __init__(self, backends: Optional[List[StorageBackend]] = None):
        self._backends: List[StorageBackend] = list(backends or [])

    @classmethod
    def initialize(cls, client_factory) -> 'StorageResolver':
        return cls([LocalStorage(), S3Storage(client_factory)])

    def register(self, *backends: StorageBackend) -> None:
        self._backends.extend(backends)

    def resolve_by_uri(self, uri: str) -> StorageBackend:
        """Resolve a backend from the URI scheme, plain paths are local.

        Raises:
            UnsupportedProtocol: If no backend handles the scheme
        """
        protocol = self.extract_protocol(uri)
        return self.resolve_by_protocol(protocol or LocalStorage.protocol)

    def resolve_by_protocol(self, protocol: str) -> StorageBackend:
        for backend in self._backends:
            if backend.get_protocol() == protocol:
                return backend

        raise UnsupportedProtocol(protocol)

    @staticmethod
    def extract_protocol(uri: str) -> Optional[str]:
        scheme, sep, _ = uri.partition('://')
        if not sep:
            return None
        return scheme.lower()
