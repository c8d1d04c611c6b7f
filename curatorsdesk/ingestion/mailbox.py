"""
Mailbox Message Sources
=======================

Where raw newsletter messages come from. ``GmailMessageSource`` talks to the
Gmail REST API with an access token obtained from a credential provider;
``FixtureMessageSource`` reads messages from a JSON file for local runs and
tests. Token acquisition and refresh belong to the credential provider.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlencode

import aiohttp

from ..config.settings import get_settings
from ..utils.exceptions import ErrorCode, FetchFailure, MailboxError
from ..utils.logging import get_logger_for_component
from .http_client import fetch_document

CredentialProvider = Callable[[], Awaitable[str]]


class StaticCredentialProvider:
    """Credential provider returning an already-issued access token."""

    def __init__(self, access_token: str):
        self._access_token = access_token

    async def __call__(self) -> str:
        return self._access_token


class MessageSource(ABC):
    """A mailbox that can list newsletter messages."""

    @abstractmethod
    async def list_messages(self, session: aiohttp.ClientSession) -> List[Dict[str, Any]]:
        """Return raw messages, oldest listing order preserved.

        Raises:
            MailboxError: If the mailbox cannot be read at all
        """


class FixtureMessageSource(MessageSource):
    """Messages loaded from ``{"messages": [...]}`` JSON."""

    def __init__(self, path: str):
        self.path = Path(path)

    async def list_messages(self, session: Optional[aiohttp.ClientSession] = None) -> List[Dict[str, Any]]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise MailboxError(
                f"Cannot read mailbox fixture {self.path}: {e}",
                error_code=ErrorCode.MAILBOX_FIXTURE_INVALID,
                recoverable=False,
            ) from e

        messages = data.get("messages") if isinstance(data, dict) else data
        if not isinstance(messages, list):
            raise MailboxError(
                f"Mailbox fixture {self.path} has no messages list",
                error_code=ErrorCode.MAILBOX_FIXTURE_INVALID,
                recoverable=False,
            )
        return messages


class GmailMessageSource(MessageSource):
    """Gmail REST API client: search, then fetch each message in full."""

    def __init__(
        self,
        credential_provider: CredentialProvider,
        query: Optional[str] = None,
        max_results: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.credential_provider = credential_provider
        self.query = query or settings.mailbox.search_query
        self.max_results = max_results or settings.mailbox.max_results
        self.base_url = (base_url or settings.mailbox.api_base_url).rstrip("/")
        self.timeout = timeout or settings.fetch.request_timeout
        self.logger = get_logger_for_component("mailbox")

    async def list_messages(self, session: aiohttp.ClientSession) -> List[Dict[str, Any]]:
        token = await self.credential_provider()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

        listing = await self._get_json(
            session,
            f"{self.base_url}/users/me/messages",
            headers,
            params={"q": self.query, "maxResults": str(self.max_results)},
        )
        refs = listing.get("messages") or []
        self.logger.info(f"Mailbox search returned {len(refs)} messages")

        messages = []
        for ref in refs:
            message_id = ref.get("id")
            if not message_id:
                continue
            try:
                messages.append(
                    await self._get_json(
                        session,
                        f"{self.base_url}/users/me/messages/{message_id}",
                        headers,
                        params={"format": "full"},
                    )
                )
            except (MailboxError, FetchFailure) as e:
                if e.error_code == ErrorCode.MAILBOX_ACCESS_DENIED:
                    raise
                # Not recorded as processed, so the next cycle retries it.
                self.logger.warning(f"Failed to download message {message_id}: {e}")

        return messages

    async def _get_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        headers: Dict[str, str],
        params: Dict[str, str],
    ) -> Dict[str, Any]:
        query = urlencode(params)
        full_url = f"{url}?{query}" if query else url

        try:
            document = await fetch_document(session, full_url, self.timeout, headers)
        except FetchFailure as e:
            raise MailboxError(f"Mailbox request failed: {e}", url=url) from e

        if document.status in (401, 403):
            raise MailboxError(
                f"Mailbox access denied (HTTP {document.status})",
                url=url,
                error_code=ErrorCode.MAILBOX_ACCESS_DENIED,
                user_message="Mailbox access was revoked. Reconnect the account.",
                recoverable=False,
            )
        if not document.ok:
            raise FetchFailure(
                f"HTTP {document.status}: {document.reason or 'error'}",
                url=url,
                status_code=document.status,
            )

        try:
            data = json.loads(document.body)
        except ValueError as e:
            raise MailboxError(f"Invalid JSON from mailbox API: {e}", url=url) from e
        if not isinstance(data, dict):
            raise MailboxError("Unexpected mailbox API response", url=url)
        return data
