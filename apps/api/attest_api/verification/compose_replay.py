"""Integrity and drift checks for AI compose proofs."""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.orm import Session

from attest_api.errors import StorageError
from attest_api.proofs.hashing import normalize_hash, sha256_hex
from attest_api.proofs.kinds import COMPOSE_KIND, LEGACY_COMPOSE_TYPES
from attest_api.proofs.packet import packet_hash_of
from attest_api.proofs.store import ProofRecord, ProofStore
from attest_api.settings import get_settings
from attest_api.storage.service import ArtifactStorage, call_with_timeout
from attest_api.utils.metrics import compose_replay_results

logger = logging.getLogger(__name__)

MAX_REPLAY_LIMIT = 200


class ComposeProvider:
    """Re-generates compose output from a packet's recorded input."""

    def compose(
        self,
        prompt: str,
        language: Optional[str] = None,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        seed: Optional[str] = None,
    ) -> str:
        raise NotImplementedError


class StubComposeProvider(ComposeProvider):
    """Deterministic development provider."""

    def compose(self, prompt, language=None, system_prompt=None, max_tokens=None, seed=None) -> str:
        return f"Draft:\n{prompt}\n\n[dev stub; deterministic]"


class HttpComposeProvider(ComposeProvider):
    """Calls an HTTP compose endpoint returning ``{"text": ...}``."""

    def __init__(self, url: str, timeout: float = 60.0):
        self.url = url
        self.timeout = timeout

    def compose(self, prompt, language=None, system_prompt=None, max_tokens=None, seed=None) -> str:
        body = {
            "prompt": prompt,
            "language": language,
            "systemPrompt": system_prompt,
            "maxTokens": max_tokens,
            "seed": seed,
        }
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, json={k: v for k, v in body.items() if v is not None})
            response.raise_for_status()
            return str(response.json().get("text") or "")


def provider_from_settings(settings=None) -> Optional[ComposeProvider]:
    settings = settings or get_settings()
    if settings.compose_provider_url:
        return HttpComposeProvider(
            settings.compose_provider_url, timeout=settings.compose_provider_timeout_seconds
        )
    if settings.is_development:
        return StubComposeProvider()
    return None


@dataclass
class ComposeReplaySummary:
    total: int = 0
    pass_: int = 0
    drift: int = 0
    miss: int = 0
    rerun: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["pass"] = data.pop("pass_")
        return data


def clamp_replay_limit(limit: Optional[int], default: int = 50) -> int:
    if limit is None:
        return default
    return max(1, min(MAX_REPLAY_LIMIT, int(limit)))


class ComposeReplayer:
    """Replays ``ai:compose`` proofs.

    Integrity: the stored packet must hash to the recorded packet hash, else
    MISS. With ``rerun`` the recorded input is sent to the compose provider and
    the text compared with ``output.proposalText`` (PASS or DRIFT). When a rerun
    is not possible the integrity result stands.
    """

    def __init__(
        self,
        db: Session,
        storage: ArtifactStorage,
        proof_store: Optional[ProofStore] = None,
        provider: Optional[ComposeProvider] = None,
        echo: Optional[Callable[[str], None]] = None,
        read_timeout: Optional[float] = None,
    ):
        self.db = db
        self.storage = storage
        self.proof_store = proof_store or ProofStore(db)
        self.provider = provider
        self.echo = echo
        self.read_timeout = read_timeout if read_timeout is not None else get_settings().artifact_read_timeout_seconds

    def _line(self, text: str) -> None:
        if self.echo is not None:
            self.echo(text)

    def load_packet_text(self, record: ProofRecord) -> Optional[str]:
        """Stored packet text: the payload column, else the packet file."""
        if record.payload:
            return record.payload
        proof_file = record.meta.get("proofFile") if record.meta else None
        if not isinstance(proof_file, str) or not proof_file:
            return None
        try:
            data = call_with_timeout(self.storage.read, proof_file, timeout=self.read_timeout)
            return data.decode("utf-8")
        except (OSError, StorageError, UnicodeDecodeError) as e:
            logger.debug(f"Packet file {proof_file} unreadable for proof {record.id}: {e}")
            return None

    @staticmethod
    def integrity_ok(packet_text: Optional[str], recorded: Optional[str]) -> bool:
        recorded = normalize_hash(recorded)
        if not packet_text or not recorded:
            return False
        if normalize_hash(sha256_hex(packet_text)) == recorded:
            return True
        try:
            return packet_hash_of(packet_text) == recorded
        except ValueError:
            return False

    def rerun_matches(self, packet: Any) -> Optional[bool]:
        """True/False for match/drift, None when a rerun is not possible."""
        if self.provider is None or not isinstance(packet, dict):
            return None
        inputs = packet.get("input") or {}
        if not isinstance(inputs, dict):
            return None
        prompt = str(inputs.get("prompt") or "")
        if not prompt:
            return None
        output = packet.get("output") or {}
        expected = str(output.get("proposalText") or "") if isinstance(output, dict) else ""
        seed = inputs.get("seed")
        try:
            actual = self.provider.compose(
                prompt,
                language=inputs.get("language") if isinstance(inputs.get("language"), str) else None,
                system_prompt=inputs.get("systemPrompt") if isinstance(inputs.get("systemPrompt"), str) else None,
                max_tokens=inputs.get("maxTokens") if isinstance(inputs.get("maxTokens"), int) else None,
                seed=seed.strip() if isinstance(seed, str) and seed.strip() else None,
            )
        except (httpx.HTTPError, NotImplementedError, ValueError) as e:
            logger.info(f"Compose rerun not possible: {e}")
            return None
        return actual == expected

    def replay(
        self, subject_id: Optional[str] = None, limit: Optional[int] = None, rerun: bool = False
    ) -> ComposeReplaySummary:
        limit = clamp_replay_limit(limit, default=get_settings().compose_replay_limit)
        records = self.proof_store.select(
            subject_id=subject_id,
            kinds=[COMPOSE_KIND],
            legacy_types=LEGACY_COMPOSE_TYPES,
            limit=limit,
        )
        summary = ComposeReplaySummary(total=len(records), rerun=rerun)

        for record in records:
            label = f"subject-{record.subject_id}  {COMPOSE_KIND}  id={record.id}"
            packet_text = self.load_packet_text(record)
            if not self.integrity_ok(packet_text, record.packet_hash):
                summary.miss += 1
                compose_replay_results.labels(status="MISS").inc()
                self._line(f"MISS  {label}  (payload hash mismatch)")
                continue

            if not rerun:
                summary.pass_ += 1
                compose_replay_results.labels(status="PASS").inc()
                self._line(f"PASS  {label}")
                continue

            try:
                packet = json.loads(packet_text)
            except ValueError:
                packet = None
            matches = self.rerun_matches(packet)
            if matches is False:
                summary.drift += 1
                compose_replay_results.labels(status="DRIFT").inc()
                self._line(f"DRIFT {label}")
            else:
                summary.pass_ += 1
                compose_replay_results.labels(status="PASS").inc()
                note = "rerun matches" if matches else "integrity ok; rerun skipped"
                self._line(f"PASS  {label}  ({note})")

        logger.info(
            f"Compose replay: {summary.total} total, {summary.pass_} pass, {summary.drift} drift, {summary.miss} miss",
            extra={"subject_id": subject_id, "rerun": rerun},
        )
        return summary
