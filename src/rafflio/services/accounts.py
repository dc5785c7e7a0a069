"""Account service — bank-transfer payee accounts shown at checkout."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Argentine CBU/CVU: 22 digits
_CBU_RE = re.compile(r"^\d{22}$")


class AccountError(Exception):
    """Account service error with HTTP status hint."""

    def __init__(self, detail: str, status_code: int = 400) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class AccountService:
    def __init__(self, account_repo: Any, raffle_repo: Any | None = None) -> None:
        self.account_repo = account_repo
        self.raffle_repo = raffle_repo

    def list_accounts(self) -> list[dict[str, Any]]:
        return self.account_repo.find_all(limit=100, order_by="created_at DESC")

    def get_account(self, account_id: str) -> dict[str, Any]:
        account = self.account_repo.find_by_id(account_id)
        if account is None:
            raise AccountError("Account not found", status_code=404)
        return account

    def create_account(
        self,
        *,
        cbu: str,
        alias: str,
        titular: str,
        banco: str,
        email: str = "",
        whatsapp: str = "",
    ) -> dict[str, Any]:
        cbu = cbu.strip()
        if not _CBU_RE.match(cbu):
            raise AccountError("CBU must be 22 digits", status_code=422)
        if self.account_repo.find_by_alias(alias) is not None:
            raise AccountError("Alias already registered", status_code=409)

        account_id = uuid.uuid4().hex
        now = datetime.now(tz=UTC)
        data = {
            "cbu": cbu,
            "alias": alias,
            "titular": titular,
            "banco": banco,
            "email": email,
            "whatsapp": whatsapp,
            "created_at": now,
            "updated_at": now,
        }
        self.account_repo.create(data=data, new_id=account_id)
        logger.info("Account created: account_id=%s alias=%s", account_id, alias)
        return {"account_id": account_id, **data}

    def delete_account(self, account_id: str) -> None:
        self.get_account(account_id)
        if self.raffle_repo is not None and self.raffle_repo.count(
            filters={"account_id": account_id}
        ):
            raise AccountError("Account is used by a raffle", status_code=409)
        self.account_repo.delete(account_id)
        logger.info("Account deleted: account_id=%s", account_id)
