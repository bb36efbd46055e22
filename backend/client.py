"""Respondent-side helpers: the local access gate and an HTTP client.

The gate is an advisory cache kept on the respondent's machine. It only
avoids prompting for a token twice and blocks resubmitting from the same
client. It is not a security control; the server's single-use check on
``/public/validate-token`` is what actually guards private forms.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_GATE_PATH = Path.home() / ".course_feedback" / "access.json"


class AccessGate:
    """Two persisted sets of form ids: granted access, and already submitted."""

    def __init__(self, path: Path | str = DEFAULT_GATE_PATH):
        self.path = Path(path)
        self._granted: set[str] = set()
        self._submitted: set[str] = set()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            # unreadable cache: start over, the server is authoritative anyway
            logger.warning("Ignoring unreadable access cache at %s", self.path)
            return
        granted = data.get("granted", []) if isinstance(data, dict) else None
        submitted = data.get("submitted", []) if isinstance(data, dict) else None
        if not isinstance(granted, list) or not isinstance(submitted, list):
            logger.warning("Ignoring malformed access cache at %s", self.path)
            return
        self._granted = {str(x) for x in granted}
        self._submitted = {str(x) for x in submitted}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"granted": sorted(self._granted), "submitted": sorted(self._submitted)}
        self.path.write_text(json.dumps(payload), encoding="utf-8")

    def has(self, form_id: Any, form_type: str = "private") -> bool:
        """True if this client may skip the token prompt for the form."""
        return form_type == "public" or str(form_id) in self._granted

    def grant(self, form_id: Any) -> None:
        self._granted.add(str(form_id))
        self._save()

    def has_submitted(self, form_id: Any) -> bool:
        return str(form_id) in self._submitted

    def mark_submitted(self, form_id: Any) -> None:
        self._submitted.add(str(form_id))
        self._save()


@dataclass(frozen=True)
class FormState:
    form: dict
    needs_token: bool
    submitted: bool


class AlreadySubmitted(Exception):
    pass


class FeedbackClient:
    """Thin client for the public endpoints, consulting an AccessGate."""

    def __init__(self, http: httpx.Client, gate: Optional[AccessGate] = None):
        self.http = http
        self.gate = gate or AccessGate()

    def open_form(self, form_id: int) -> FormState:
        r = self.http.get(f"/public/forms/{form_id}")
        r.raise_for_status()
        form = r.json()
        submitted = self.gate.has_submitted(form_id)
        needs_token = not submitted and not self.gate.has(form_id, form["type"])
        return FormState(form=form, needs_token=needs_token, submitted=submitted)

    def redeem(self, form_id: int, token: str) -> str:
        """Redeem a token and remember the grant.

        Returns:
            str: "granted", "invalid" or "used".
        """
        r = self.http.post("/public/validate-token", json={"form_id": form_id, "token": token.strip()})
        if r.status_code == 404:
            return "invalid"
        if r.status_code == 403:
            return "used"
        r.raise_for_status()
        self.gate.grant(form_id)
        return "granted"

    def submit(self, form_id: int, answers: dict[int, str]) -> dict:
        if self.gate.has_submitted(form_id):
            raise AlreadySubmitted(f"Form {form_id} was already submitted from this device")
        r = self.http.post("/public/responses", json={
            "form_id": form_id,
            "answers": {str(k): v for k, v in answers.items()},
        })
        r.raise_for_status()
        self.gate.mark_submitted(form_id)
        return r.json()
