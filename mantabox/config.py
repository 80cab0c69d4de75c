import base64
import binascii
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from mantabox.core.errors import ConfigError, TransientBackendError
from mantabox.core.logging import ROOT_LOGGER_NAME, get_logger, setup_logger
from mantabox.core.retry import RetryConfig

PROVIDERS = {"manta", "s3", "local"}

# Keys of the JSON mount config, e.g.
#
# {
#   "mount": "/foo/bar",
#   "provider": "manta",
#   "basePath": "~~/stor/",
#   "url": "https://us-east.manta.joyent.com",
#   "user": "user@domain.com",
#   "keyId": "8c:09:65:e3:8c:09:65:e3:8c:09:65:e3:8c:09:65:e3",
#   "keyStore": "/Users/you/.ssh/joyent_id_rsa"
# }
MOUNT_KEYS = {
    "provider": "provider",
    "basePath": "base_path",
    "url": "url",
    "user": "user",
    "keyId": "key_id",
    "key": "key",
    "key64": "key64",
    "keyStore": "key_store",
}


def _load_dotenv() -> None:
    env_path = Path(__file__).resolve().parent / ".env"
    load_dotenv(dotenv_path=env_path, override=False)
    load_dotenv(override=False)


@dataclass(frozen=True)
class DriverConfig:
    provider: str = "manta"
    base_path: str = "~~/stor/"

    # Manta
    url: Optional[str] = None
    user: Optional[str] = None
    key_id: Optional[str] = None
    key: Optional[str] = None
    key64: Optional[str] = None
    key_store: Optional[str] = None
    request_timeout_seconds: float = 30.0

    # Transport retry (gateway only; the driver never retries)
    max_retry_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 10.0

    # S3-compatible
    s3_bucket_name: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_region: Optional[str] = None

    # Local
    local_root: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file_path: Optional[str] = None

    @classmethod
    def from_dict(cls, params: Mapping[str, Any]) -> "DriverConfig":
        """Build a config from a mount config mapping (camelCase or field names)."""
        known = {field.name for field in fields(cls)}
        values = {}
        for key, value in params.items():
            name = MOUNT_KEYS.get(key, key)
            if name in known:
                values[name] = value
        return cls(**values)

    def validate(self) -> None:
        if self.provider not in PROVIDERS:
            raise ConfigError("MANTABOX_PROVIDER must be 'manta', 's3', or 'local'")

        if not self.base_path:
            raise ConfigError("MANTA_BASE_PATH must not be empty")

        if self.max_retry_attempts < 0 or self.max_retry_attempts > 10:
            raise ConfigError("MAX_RETRY_ATTEMPTS must be between 0 and 10")

        if self.retry_base_delay_seconds <= 0:
            raise ConfigError("RETRY_BASE_DELAY_SECONDS must be > 0")

        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ConfigError("RETRY_MAX_DELAY_SECONDS must be >= RETRY_BASE_DELAY_SECONDS")

        if self.request_timeout_seconds <= 0:
            raise ConfigError("MANTABOX_REQUEST_TIMEOUT must be > 0")

        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError("LOG_LEVEL must be DEBUG, INFO, WARNING, ERROR, or CRITICAL")

        if self.log_format not in {"json", "text"}:
            raise ConfigError("LOG_FORMAT must be 'json' or 'text'")

        if self.provider == "manta":
            if not self.url:
                raise ConfigError("MANTA_URL is required when MANTABOX_PROVIDER=manta")
            if not self.user:
                raise ConfigError("MANTA_USER is required when MANTABOX_PROVIDER=manta")
            if not (self.key or self.key64 or self.key_store):
                raise ConfigError("One of MANTA_KEY, MANTA_KEY64 or MANTA_KEY_STORE is required")

        if self.provider == "s3" and not self.s3_bucket_name:
            raise ConfigError("S3_BUCKET_NAME is required when MANTABOX_PROVIDER=s3")

        if self.provider == "local":
            if not self.local_root:
                raise ConfigError("LOCAL_STORAGE_ROOT is required when MANTABOX_PROVIDER=local")
            if not Path(self.local_root).is_dir():
                raise ConfigError(f"LOCAL_STORAGE_ROOT does not exist: {self.local_root}")

    def resolve_key_material(self) -> str:
        """
        Return the private key text.

        Resolution order: explicit key, then base64 key, then key store file.

        Raises:
            ConfigError: If no source yields key text
        """
        if self.key:
            return self.key

        if self.key64:
            try:
                return base64.b64decode(self.key64, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exc:
                raise ConfigError("MANTA_KEY64 is not valid base64 key text") from exc

        if self.key_store:
            try:
                return Path(self.key_store).expanduser().read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise ConfigError(f"Unable to read key store: {self.key_store}") from exc

        raise ConfigError("No private key material configured")

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
            retryable_exceptions=(TransientBackendError,),
        )

    def create_gateway(self):
        """
        Create the backend gateway for the configured provider.

        Returns:
            BackendGateway instance (MantaGateway, S3Gateway or LocalGateway)
        """
        from mantabox.storage import LocalGateway, MantaGateway, S3Gateway
        from mantabox.storage.signer import RequestSigner, load_private_key, md5_fingerprint

        if self.provider == "manta":
            private_key = load_private_key(self.resolve_key_material())
            # Without MANTA_KEY_ID the key is named by its MD5 fingerprint
            key_id = self.key_id or md5_fingerprint(private_key)
            signer = RequestSigner(user=self.user, key_id=key_id, private_key=private_key)
            return MantaGateway(
                url=self.url,
                signer=signer,
                timeout=self.request_timeout_seconds,
                retry_config=self.retry_config(),
            )
        elif self.provider == "s3":
            return S3Gateway(
                bucket_name=self.s3_bucket_name,
                endpoint_url=self.s3_endpoint_url,
                access_key_id=self.s3_access_key_id,
                secret_access_key=self.s3_secret_access_key,
                region=self.s3_region,
            )
        elif self.provider == "local":
            return LocalGateway(root=self.local_root)
        else:
            raise ConfigError(f"Unknown storage provider: {self.provider}")

    def create_driver(self, logger: Optional[logging.Logger] = None):
        """
        Validate the config and build a driver around a fresh gateway.

        Without an injected logger, the package logger is configured from the
        LOG_* settings and the driver logs through its ``driver`` category.

        Raises:
            ConfigError: If the config is incomplete or the key cannot be loaded
        """
        from mantabox.driver import StorageDriver

        self.validate()
        if logger is None:
            setup_logger(ROOT_LOGGER_NAME, self)
            logger = get_logger("driver")
        return StorageDriver(self.create_gateway(), self.base_path, logger=logger)


def load_config() -> DriverConfig:
    _load_dotenv()

    config = DriverConfig(
        provider=os.environ.get("MANTABOX_PROVIDER", "manta"),
        base_path=os.environ.get("MANTA_BASE_PATH", "~~/stor/"),
        url=os.environ.get("MANTA_URL"),
        user=os.environ.get("MANTA_USER"),
        key_id=os.environ.get("MANTA_KEY_ID"),
        key=os.environ.get("MANTA_KEY"),
        key64=os.environ.get("MANTA_KEY64"),
        key_store=os.environ.get("MANTA_KEY_STORE"),
        request_timeout_seconds=float(os.environ.get("MANTABOX_REQUEST_TIMEOUT", "30")),
        max_retry_attempts=int(os.environ.get("MAX_RETRY_ATTEMPTS", "3")),
        retry_base_delay_seconds=float(os.environ.get("RETRY_BASE_DELAY_SECONDS", "0.5")),
        retry_max_delay_seconds=float(os.environ.get("RETRY_MAX_DELAY_SECONDS", "10.0")),
        s3_bucket_name=os.environ.get("S3_BUCKET_NAME"),
        s3_endpoint_url=os.environ.get("S3_ENDPOINT_URL"),
        s3_access_key_id=os.environ.get("S3_ACCESS_KEY_ID"),
        s3_secret_access_key=os.environ.get("S3_SECRET_ACCESS_KEY"),
        s3_region=os.environ.get("S3_REGION"),
        local_root=os.environ.get("LOCAL_STORAGE_ROOT"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_format=os.environ.get("LOG_FORMAT", "json"),
        log_file_path=os.environ.get("LOG_FILE_PATH"),
    )

    config.validate()
    return config
