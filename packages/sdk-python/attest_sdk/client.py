"""Attest API client."""

from typing import Iterable, Optional

import requests


class AttestClient:
    """Client for the Attest proof and provenance API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 30.0):
        """Initialize client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, path: str, **kwargs):
        response = self.session.request(
            method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
        )
        response.raise_for_status()
        return response.json()

    def record_proof(
        self,
        subject_id: str,
        kind: str,
        hash: Optional[str] = None,
        path: Optional[str] = None,
        meta: Optional[dict] = None,
        input: Optional[dict] = None,
        output=None,
        actor: str = "ai",
        actor_id: Optional[str] = None,
    ) -> dict:
        """Record a proof.

        With ``output`` the server builds the proof packet and the matching
        provenance event in one transaction; otherwise ``hash`` is required.
        """
        payload = {"kind": kind, "actor": actor, "meta": meta or {}}
        if hash is not None:
            payload["hash"] = hash
        if path is not None:
            payload["path"] = path
        if input is not None:
            payload["input"] = input
        if output is not None:
            payload["output"] = output
        if actor_id:
            payload["actorId"] = actor_id
        return self._request("POST", f"/v1/subjects/{subject_id}/proofs", json=payload)

    def list_proofs(self, subject_id: str) -> dict:
        return self._request("GET", f"/v1/subjects/{subject_id}/proofs")

    def record_provenance(
        self,
        subject_id: str,
        action: str,
        actor: str = "human",
        actor_id: Optional[str] = None,
        details: Optional[dict] = None,
        workspace_id: Optional[str] = None,
    ) -> dict:
        """Append a provenance event. Returns ``{"id", "ts"}``."""
        payload = {"action": action, "actor": actor, "details": details or {}}
        if actor_id:
            payload["actorId"] = actor_id
        if workspace_id:
            payload["workspaceId"] = workspace_id
        return self._request("POST", f"/v1/subjects/{subject_id}/provenance", json=payload)

    def timeline(
        self,
        subject_id: str,
        action: Optional[str] = None,
        limit: Optional[int] = None,
        before: Optional[int] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> list:
        """Merged, de-duplicated provenance timeline, newest first."""
        params = {
            "action": action,
            "limit": limit,
            "before": before,
            "from": from_ts,
            "to": to_ts,
        }
        params = {key: value for key, value in params.items() if value is not None}
        body = self._request("GET", f"/v1/subjects/{subject_id}/timeline", params=params)
        return body["entries"]

    def proof_health(self, subject_id: str) -> dict:
        return self._request("GET", f"/v1/subjects/{subject_id}/proof-health")

    def proof_health_batch(self, subject_ids: Iterable[str]) -> dict:
        return self._request(
            "POST", "/v1/proof-health/batch", json={"subjectIds": list(subject_ids)}
        )

    def verify(
        self,
        subject_id: Optional[str] = None,
        limit: Optional[int] = None,
        include_traces: bool = False,
    ) -> dict:
        """Re-verify export artifacts and compose proofs on demand."""
        payload = {"includeTraces": include_traces}
        if subject_id:
            payload["subjectId"] = subject_id
        if limit is not None:
            payload["limit"] = limit
        return self._request("POST", "/v1/verify", json=payload)

    def list_reports(
        self,
        limit: Optional[int] = None,
        before: Optional[str] = None,
        status: Optional[str] = None,
    ) -> dict:
        params = {"limit": limit, "before": before, "status": status}
        params = {key: value for key, value in params.items() if value is not None}
        return self._request("GET", "/v1/verification-reports", params=params)

    def latest_report(self) -> dict:
        return self._request("GET", "/v1/verification-reports/latest")

    def get_report(self, report_id: str, full: bool = False) -> dict:
        return self._request(
            "GET", f"/v1/verification-reports/{report_id}", params={"full": str(full).lower()}
        )
