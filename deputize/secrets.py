"""
Credential loading for deputize.

The secret bundle is read from AWS Secrets Manager when `secret_path` is
configured, then from an optional YAML or JSON file named by
`secrets_file`, then from environment variables. Later sources override
earlier ones. Only the secrets needed by enabled components are required.
"""

import os
import json
import yaml
import boto3
import logging
from botocore.exceptions import BotoCoreError, ClientError
from dataclasses import dataclass, fields
from typing import Dict, Any, Optional

from deputize.config import enabled_sinks

logger = logging.getLogger(__name__)


class SecretsError(Exception):
    """Raised when required secrets are missing or unreadable."""
    pass


@dataclass
class SecretBundle:
    """Credentials for the roster source and every sink."""

    pd_auth_token: Optional[str] = None
    ldap_mod_user_password: Optional[str] = None
    gitlab_auth_token: Optional[str] = None
    slack_auth_token: Optional[str] = None

    def __repr__(self):
        masked = ', '.join(f"{f.name}={'****' if getattr(self, f.name) else None}" for f in fields(self))
        return f"SecretBundle({masked})"


# Key in the secret store or secrets file, environment variable
SECRET_SOURCES = {
    'pd_auth_token': ('PDAuthToken', 'DEPUTIZE_PD_AUTH_TOKEN'),
    'ldap_mod_user_password': ('LDAPModUserPassword', 'DEPUTIZE_LDAP_PASSWORD'),
    'gitlab_auth_token': ('GitlabAuthToken', 'DEPUTIZE_GITLAB_TOKEN'),
    'slack_auth_token': ('SlackAuthToken', 'DEPUTIZE_SLACK_TOKEN'),
}

# Secret required by each sink module
SINK_SECRETS = {
    'ldap_sink': 'ldap_mod_user_password',
    'gitlab_sink': 'gitlab_auth_token',
    'slack_sink': 'slack_auth_token',
}


def _read_secrets_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SecretsError(f"Unable to read secrets file {path}: {e}")
    except yaml.YAMLError as e:
        raise SecretsError(f"Invalid secrets file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SecretsError(f"Secrets file {path} must contain a mapping")
    return data


def _read_secrets_store(secret_path: str, region: Optional[str] = None) -> Dict[str, Any]:
    """
    Fetch the secret bundle stored as a JSON SecretString in AWS Secrets Manager.

    Args:
        secret_path: Secret name or ARN
        region: AWS region; defaults to $AWS_REGION

    Raises:
        SecretsError: If the secret cannot be fetched or is not a JSON object
    """
    region = region or os.getenv('AWS_REGION')
    if not region:
        raise SecretsError(f"No region for secret {secret_path}: set secret_region or $AWS_REGION")

    try:
        client = boto3.client('secretsmanager', region_name=region)
        response = client.get_secret_value(SecretId=secret_path)
    except (BotoCoreError, ClientError) as e:
        raise SecretsError(f"Unable to read secret {secret_path} from AWS Secrets Manager: {e}")

    try:
        data = json.loads(response.get('SecretString') or '{}')
    except ValueError as e:
        raise SecretsError(f"Secret {secret_path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise SecretsError(f"Secret {secret_path} must contain a JSON object")
    logger.debug(f"Read secret {secret_path} from AWS Secrets Manager in {region}")
    return data


def load_secrets(config: Dict[str, Any]) -> SecretBundle:
    """
    Load and validate the secrets needed by the enabled components.

    Args:
        config: Loaded configuration dictionary

    Returns:
        SecretBundle

    Raises:
        SecretsError: Listing every missing secret
    """
    sources = []
    secret_path = config.get('secret_path')
    if secret_path:
        sources.append(_read_secrets_store(secret_path, config.get('secret_region')))

    secrets_file = config.get('secrets_file')
    if secrets_file:
        sources.append(_read_secrets_file(secrets_file))
        logger.debug(f"Read secrets file {secrets_file}")

    values = {}
    for attribute, (file_key, env_var) in SECRET_SOURCES.items():
        value = None
        for source in sources:
            value = source.get(file_key) or source.get(attribute) or value
        env_value = os.getenv(env_var)
        if env_value:
            value = env_value
            logger.debug(f"Applied environment override for {attribute}")
        values[attribute] = str(value) if value is not None else None

    bundle = SecretBundle(**values)

    required = ['pd_auth_token']
    for sink in enabled_sinks(config):
        attribute = SINK_SECRETS.get(sink.get('module'))
        if attribute and attribute not in required:
            required.append(attribute)

    missing = [a for a in required if not getattr(bundle, a)]
    if missing:
        raise SecretsError("Missing secrets:\n" + "\n".join(
            f"  - {a} (key {SECRET_SOURCES[a][0]} in the secret store or secrets file, or ${SECRET_SOURCES[a][1]})"
            for a in missing))

    return bundle
