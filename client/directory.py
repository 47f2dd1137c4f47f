"""
HTTP clients for the key directory and the escrow storage service.

The server maps user ids to their current public key and keeps one
{publicKey, encryptedPrivateKey} escrow record per account. Its content is
treated as opaque: escrow records are only ever checked by attempting to
recover them.
"""

import logging
from typing import Optional, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from e2ee.codec import UserId, canonical_user_id

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """The key directory or escrow service request failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PublicKeyResponse(BaseModel):
    """A user's published public key"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Union[int, str] = Field(alias="userId")
    public_key: Optional[str] = Field(default=None, alias="publicKey")


class EscrowRecord(BaseModel):
    """Escrowed key pair: public key plus password-encrypted private key"""
    model_config = ConfigDict(populate_by_name=True)

    public_key: str = Field(alias="publicKey")
    encrypted_private_key: str = Field(alias="encryptedPrivateKey")


class KeyDirectoryClient:
    """
    Client for the key directory and escrow endpoints.

    Uses an httpx.AsyncClient; pass one in to share connections or to fake
    the server with httpx.MockTransport.
    """

    def __init__(self, server_url: str, token: Optional[str] = None,
                 http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        """
        Args:
            server_url: Base URL of the chat server
            token: Bearer token of the logged-in account
            http_client: Optional preconfigured client
            timeout: Request timeout in seconds
        """
        self.server_url = server_url.rstrip("/")
        self.token = token
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.http_client.request(
                method, f"{self.server_url}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise DirectoryError(f"{method} {path} failed: {e}") from e
        return response

    @staticmethod
    def _path_segment(uid: str) -> str:
        """Percent-encode a user id as a single URL path segment"""
        segment = quote(uid, safe="")
        if segment in (".", ".."):
            raise DirectoryError(f"Invalid user id {uid!r}")
        return segment

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise DirectoryError(f"{action} failed with HTTP {response.status_code}", response.status_code)

    async def get_public_key(self, user_id: UserId) -> Optional[str]:
        """
        Look up a user's current public key.

        Returns:
            Serialized public key, or None if the user has none
        """
        uid = canonical_user_id(user_id)
        response = await self._request("GET", f"/api/users/{self._path_segment(uid)}/public-key")
        if response.status_code == 404:
            logger.info("User %s has no public key", uid)
            return None
        self._check(response, "Public key lookup")

        try:
            key = PublicKeyResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DirectoryError(f"Malformed public key response for user {uid}") from e
        return key.public_key or None

    async def upload_public_key(self, public_key: str) -> None:
        """Publish the account's public key"""
        response = await self._request("PUT", "/api/users/me/public-key", json={"publicKey": public_key})
        self._check(response, "Public key upload")

    async def sync_keys(self, record: EscrowRecord) -> None:
        """Store the account's escrow record"""
        response = await self._request("POST", "/api/users/me/keys", json=record.model_dump(by_alias=True))
        self._check(response, "Key sync")
        logger.info("Escrow record uploaded")

    async def get_my_keys(self) -> Optional[EscrowRecord]:
        """
        Fetch the account's escrow record.

        Returns:
            The record, or None if none is stored
        """
        response = await self._request("GET", "/api/users/me/keys")
        if response.status_code == 404:
            return None
        self._check(response, "Key fetch")

        try:
            data = response.json()
        except ValueError as e:
            raise DirectoryError("Malformed escrow record") from e
        if not isinstance(data, dict) or not data.get("publicKey") or not data.get("encryptedPrivateKey"):
            return None
        try:
            return EscrowRecord.model_validate(data)
        except ValidationError as e:
            raise DirectoryError("Malformed escrow record") from e

    async def change_password(self, old_password: str, new_password: str, encrypted_private_key: str) -> None:
        """Change the account password together with the re-encrypted private key"""
        response = await self._request("POST", "/api/users/me/password", json={
            "oldPassword": old_password,
            "newPassword": new_password,
            "encryptedPrivateKey": encrypted_private_key,
        })
        self._check(response, "Password change")

    async def close(self):
        await self.http_client.aclose()
