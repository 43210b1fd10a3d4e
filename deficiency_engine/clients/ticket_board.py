# deficiency_engine/clients/ticket_board.py
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import settings
from ..errors import IntegrationErrorKind, TicketBoardError

log = logging.getLogger("deficiency.ticket_board")


class TicketBoardClient:
    """Trello-style REST client; only the card archive surface is used here."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base = (base_url or settings.ticket_board_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ticket_board_api_key
        self.auth_token = auth_token if auth_token is not None else settings.ticket_board_auth_token
        self.timeout = float(timeout if timeout is not None else settings.ticket_board_timeout_seconds)
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self.api_key and self.auth_token)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def archive_card(self, card_id: str, archiving: bool) -> dict[str, Any]:
        """
        Close (archiving=True) or reopen a card.

        Raises TicketBoardError:
          - CARD_DELETED on 404 (card removed on the board)
          - NOT_AUTHORIZED on 401
          - NOT_CONFIGURED without credentials
          - REQUEST_FAILED for anything else
        """
        if not self.enabled():
            raise TicketBoardError("ticket board credentials not set", kind=IntegrationErrorKind.NOT_CONFIGURED)
        if not card_id:
            raise TicketBoardError("card id is required", kind=IntegrationErrorKind.REQUEST_FAILED)

        url = f"{self.base}/cards/{card_id}"
        params = {
            "closed": "true" if archiving else "false",
            "key": self.api_key,
            "token": self.auth_token,
        }

        try:
            with self._client() as client:
                r = client.put(url, params=params)
        except httpx.HTTPError as e:
            raise TicketBoardError(f"ticket board request failed: {e}", kind=IntegrationErrorKind.REQUEST_FAILED) from e

        if r.status_code == 404:
            raise TicketBoardError(f"card {card_id} not found", kind=IntegrationErrorKind.CARD_DELETED)
        if r.status_code == 401:
            raise TicketBoardError("ticket board rejected credentials", kind=IntegrationErrorKind.NOT_AUTHORIZED)
        if r.status_code >= 400:
            raise TicketBoardError(
                f"ticket board returned {r.status_code} for card {card_id}",
                kind=IntegrationErrorKind.REQUEST_FAILED,
            )

        log.info("ticket_board_card_%s", "closed" if archiving else "reopened", extra={"task": "archive_card"})
        try:
            data = r.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
