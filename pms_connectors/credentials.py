"""
Credential & Auth Model
Typed secret material per auth scheme and its encryption at rest
"""

import base64
import json
import os
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union
from urllib.parse import urlencode

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from .errors import InvalidCredentialsError


class AuthType(str, Enum):
    API_KEY = "api_key"
    OAUTH2 = "oauth2"
    BASIC = "basic"


class CredentialPlacement(str, Enum):
    HEADER = "header"
    QUERY = "query"


class OAuth2GrantType(str, Enum):
    CLIENT_CREDENTIALS = "client_credentials"
    AUTHORIZATION_CODE = "authorization_code"


class ApiKeyCredentials(BaseModel):
    """API key injected as a header or query parameter"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    auth_type: AuthType = Field(default=AuthType.API_KEY, frozen=True)
    api_key: SecretStr
    api_secret: Optional[SecretStr] = None
    placement: CredentialPlacement = CredentialPlacement.HEADER
    header_name: str = "X-API-Key"
    query_param: str = "api_key"
    property_code: Optional[str] = None

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("api_key must not be blank")
        return v


class OAuth2Credentials(BaseModel):
    """
    OAuth2 client material plus the current token set.

    Client-credentials grants can always re-run. Authorization-code grants
    need the one-shot code once, then live on the refresh token.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    auth_type: AuthType = Field(default=AuthType.OAUTH2, frozen=True)
    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr
    token_url: Optional[str] = None
    grant_type: OAuth2GrantType = OAuth2GrantType.CLIENT_CREDENTIALS
    authorization_code: Optional[SecretStr] = None
    redirect_uri: Optional[str] = None
    refresh_token: Optional[SecretStr] = None
    access_token: Optional[SecretStr] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None

    @property
    def can_refresh(self) -> bool:
        return self.refresh_token is not None or self.grant_type == OAuth2GrantType.CLIENT_CREDENTIALS

    def with_token(self, **update: Any) -> "OAuth2Credentials":
        """Copy with a new token set; plain strings are wrapped as secrets"""
        for key in ("access_token", "refresh_token", "authorization_code"):
            if isinstance(update.get(key), str):
                update[key] = SecretStr(update[key])
        return self.model_copy(update=update)

    def authorization_url(self, authorize_endpoint: str, state: str) -> str:
        params = {"response_type": "code", "client_id": self.client_id, "state": state}
        if self.redirect_uri:
            params["redirect_uri"] = self.redirect_uri
        if self.scope:
            params["scope"] = self.scope
        return f"{authorize_endpoint}?{urlencode(params)}"


class BasicCredentials(BaseModel):
    """HTTP Basic with a hotel/property code header"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    auth_type: AuthType = Field(default=AuthType.BASIC, frozen=True)
    username: str = Field(..., min_length=1)
    password: SecretStr
    hotel_code: str = Field(..., min_length=1)


Credentials = Union[ApiKeyCredentials, OAuth2Credentials, BasicCredentials]

_MODELS = {
    AuthType.API_KEY: ApiKeyCredentials,
    AuthType.OAUTH2: OAuth2Credentials,
    AuthType.BASIC: BasicCredentials,
}


def parse_credentials(auth_type: Union[AuthType, str], raw: Mapping[str, Any]) -> Credentials:
    """
    Validate raw credential material for an auth scheme.

    Raises:
        InvalidCredentialsError: unknown scheme, missing or malformed fields
    """
    try:
        scheme = AuthType(auth_type)
    except ValueError:
        raise InvalidCredentialsError(f"Unknown auth type: {auth_type!r}")

    data = {key: value for key, value in dict(raw).items() if key != "auth_type"}
    model = _MODELS[scheme]
    try:
        return model(**data)
    except ValidationError as e:
        missing = [".".join(str(part) for part in err["loc"]) for err in e.errors() if err["type"] == "missing"]
        if missing:
            message = f"Missing {scheme.value} credential fields: {', '.join(missing)}"
        else:
            fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
            message = f"Invalid {scheme.value} credential fields: {', '.join(fields)}"
        raise InvalidCredentialsError(message, missing_fields=missing) from e


def credentials_to_dict(credentials: Credentials) -> Dict[str, Any]:
    """Plain JSON-able dict including secret values, for encryption only"""
    data = credentials.model_dump(mode="json")
    for name, value in credentials:
        if isinstance(value, SecretStr):
            data[name] = value.get_secret_value()
    return data


class CredentialCipher:
    """
    AES-256-GCM encryption of credential material.

    The key is derived from a configured secret with Scrypt; each token is
    base64(salt | nonce | ciphertext).
    """

    SALT_BYTES = 16
    NONCE_BYTES = 12

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("credential encryption secret must not be empty")
        self._secret = secret.encode()

    def _derive_key(self, salt: bytes) -> bytes:
        return Scrypt(salt=salt, length=32, n=2**14, r=8, p=1).derive(self._secret)

    def _seal(self, plaintext: bytes) -> str:
        salt = os.urandom(self.SALT_BYTES)
        nonce = os.urandom(self.NONCE_BYTES)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext, None)
        return base64.b64encode(salt + nonce + ciphertext).decode()

    def _open(self, token: str) -> bytes:
        try:
            blob = base64.b64decode(token.encode(), validate=True)
        except ValueError as e:
            raise InvalidCredentialsError("Stored credentials are not valid base64") from e
        if len(blob) <= self.SALT_BYTES + self.NONCE_BYTES:
            raise InvalidCredentialsError("Stored credentials are truncated")
        salt = blob[: self.SALT_BYTES]
        nonce = blob[self.SALT_BYTES : self.SALT_BYTES + self.NONCE_BYTES]
        ciphertext = blob[self.SALT_BYTES + self.NONCE_BYTES :]
        try:
            return AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise InvalidCredentialsError("Stored credentials could not be decrypted") from e

    def encrypt(self, credentials: Credentials) -> str:
        return self._seal(json.dumps(credentials_to_dict(credentials)).encode())

    def decrypt(self, token: str) -> Credentials:
        data = json.loads(self._open(token))
        return parse_credentials(data["auth_type"], data)

    def encrypt_secret(self, secret: str) -> str:
        """Encrypt a bare secret such as a webhook signing key"""
        return self._seal(secret.encode())

    def decrypt_secret(self, token: str) -> str:
        return self._open(token).decode()
