"""SSM Parameter Store access for payment secrets.

Secrets live under ``/payments/{environment}/...``:

- ``lemonsqueezy/api_key``
- ``lemonsqueezy/webhook_secret``
- ``security/access_token``
- ``security/token_signing_key``
"""

import logging
from functools import lru_cache

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

PARAMETER_PREFIX = "/payments"


class SSMServiceError(Exception):
    """Raised when SSM parameter retrieval fails."""

    def __init__(self, message: str, parameter: str | None = None) -> None:
        super().__init__(message)
        self.parameter = parameter


def parameter_path(environment: str, name: str) -> str:
    """Build the full parameter path for a payment secret.

    Args:
        environment: Environment name (dev, prod).
        name: Secret name relative to the environment, e.g. "lemonsqueezy/api_key".

    Returns:
        Full parameter path, e.g. "/payments/dev/lemonsqueezy/api_key".
    """
    return f"{PARAMETER_PREFIX}/{environment}/{name.lstrip('/')}"


class SSMService:
    """Cached reader for SecureString parameters.

    Usage:
        ssm = get_ssm_service()
        api_key = ssm.get_secret("dev", "lemonsqueezy/api_key")
    """

    def __init__(self, client=None) -> None:
        self._client = client or boto3.client("ssm")
        self._cache: dict[str, str] = {}

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Retrieve a decrypted parameter value.

        Args:
            name: Full parameter path.
            use_cache: Whether to use a cached value if available.

        Returns:
            The decrypted parameter value.

        Raises:
            SSMServiceError: If the parameter cannot be retrieved.
        """
        if use_cache and name in self._cache:
            logger.debug("SSM cache hit for %s", name)
            return self._cache[name]

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}", name) from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {name}. "
                    "Check IAM permissions for ssm:GetParameter.",
                    name,
                ) from e
            raise SSMServiceError(f"Failed to retrieve SSM parameter {name}: {e}", name) from e

        value = response["Parameter"]["Value"]
        self._cache[name] = value
        return value

    def get_secret(self, environment: str, name: str) -> str:
        """Retrieve a payment secret for an environment.

        Raises:
            SSMServiceError: If the parameter cannot be retrieved.
        """
        return self.get_parameter(parameter_path(environment, name))

    def get_optional_secret(self, environment: str, name: str) -> str | None:
        """Like get_secret, but a missing parameter yields None."""
        try:
            return self.get_secret(environment, name)
        except SSMServiceError as e:
            logger.warning("Optional secret unavailable: %s", e)
            return None

    def clear_cache(self) -> None:
        """Clear all cached parameters."""
        self._cache.clear()
        logger.info("SSM parameter cache cleared")


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance."""
    return SSMService()
