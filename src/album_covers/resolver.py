"""Cover resolver: provider fallback chain, candidate scoring and selection.

Walks the configured providers in priority order, scores every candidate
against the normalized artist/title, and accepts the first candidate that
clears the acceptance threshold and resolves to an image URL. When no
provider clears the threshold, the best sub-threshold candidate that resolves
is used; when nothing resolves, the default cover sentinel is returned.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from itertools import islice
from typing import TYPE_CHECKING, Any

from album_covers.normalize import NormalizedQuery, Normalizer
from album_covers.provider import (
    Candidate,
    CoverProvider,
    CoverQuery,
    ProviderUnavailable,
    ReleaseStatus,
)

if TYPE_CHECKING:
    from album_covers.catalog_db import Album, AlbumStore
    from album_covers.config import ScoringConfig

logger = logging.getLogger(__name__)

DEFAULT_COVER = "/images/default-cover.png"

# Known placeholder images that count as "no cover"
PLACEHOLDER_PATTERNS = ("spacer.gif",)


def needs_cover(url: str | None) -> bool:
    """Whether a stored cover URL is missing, the default, or a placeholder."""
    if url is None or not url.strip():
        return True
    if url == DEFAULT_COVER:
        return True
    return any(pattern in url for pattern in PLACEHOLDER_PATTERNS)


class ResolutionState(StrEnum):
    """States a resolution passes through."""

    PENDING = "pending"
    PROVIDER_ATTEMPT = "provider_attempt"
    ACCEPTED = "accepted"
    NEXT_PROVIDER = "next_provider"
    FALLBACK = "fallback"
    EXHAUSTED = "exhausted"


@dataclass
class ScoringPolicy:
    """Scoring weights and acceptance policy."""

    title_exact: int = 60
    title_partial: int = 30
    artist_exact: int = 40
    artist_partial: int = 20
    official_bonus: int = 10
    native_score_divisor: int = 5
    native_score_cap: int = 20
    acceptance_threshold: int = 50
    max_candidates: int = 10
    cooldown_seconds: float = 1.1

    @classmethod
    def from_config(cls, scoring: ScoringConfig, max_candidates: int = 10) -> ScoringPolicy:
        return cls(
            title_exact=scoring.title_exact,
            title_partial=scoring.title_partial,
            artist_exact=scoring.artist_exact,
            artist_partial=scoring.artist_partial,
            official_bonus=scoring.official_bonus,
            native_score_divisor=scoring.native_score_divisor,
            native_score_cap=scoring.native_score_cap,
            acceptance_threshold=scoring.acceptance_threshold,
            max_candidates=max_candidates,
            cooldown_seconds=scoring.cooldown_seconds,
        )

    def score(self, candidate: Candidate, target: NormalizedQuery, normalizer: Normalizer) -> int:
        """
        Score a candidate against the normalized query.

        Title: exact match, else substring in either direction.
        Artist: any credited name matching exactly, else any substring match.
        Official releases and the provider's own relevance score add bonuses.
        """
        total = 0

        title = normalizer.normalize(candidate.title)
        if title and title == target.title:
            total += self.title_exact
        elif _overlaps(title, target.title):
            total += self.title_partial

        artists = [normalizer.normalize(name) for name in candidate.artist_names]
        if any(name and name == target.artist for name in artists):
            total += self.artist_exact
        elif any(_overlaps(name, target.artist) for name in artists):
            total += self.artist_partial

        if candidate.status == ReleaseStatus.OFFICIAL:
            total += self.official_bonus

        if candidate.provider_score is not None:
            native = max(0, candidate.provider_score) // self.native_score_divisor
            total += min(native, self.native_score_cap)

        return total


def _overlaps(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return a in b or b in a


@dataclass
class ScoredCandidate:
    """A candidate with its score and the provider that produced it."""

    candidate: Candidate
    score: int
    provider: CoverProvider
    rank: int
    order: int = 0

    @property
    def sort_key(self) -> tuple[int, int, int]:
        """Higher score first, then earlier provider, then provider's own order."""
        return (-self.score, self.rank, self.order)


@dataclass(frozen=True)
class ResolvedCover:
    """Outcome of a resolution; only url is persisted."""

    url: str
    provider: str | None = None
    score: int | None = None
    state: ResolutionState = ResolutionState.EXHAUSTED

    @property
    def is_default(self) -> bool:
        return self.url == DEFAULT_COVER


@dataclass
class ProviderAttempt:
    """What happened when one provider was consulted."""

    provider: str
    used_fallback_query: bool = False
    candidates: int = 0
    best_score: int | None = None
    state: ResolutionState = ResolutionState.PROVIDER_ATTEMPT
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "used_fallback_query": self.used_fallback_query,
            "candidates": self.candidates,
            "best_score": self.best_score,
            "state": str(self.state),
            "error": self.error,
        }


@dataclass
class ResolutionTrace:
    """Structured record of a resolution, for --explain output and debugging."""

    artist: str
    title: str
    primary_query: CoverQuery | None = None
    fallback_query: CoverQuery | None = None
    states: list[ResolutionState] = field(default_factory=lambda: [ResolutionState.PENDING])
    attempts: list[ProviderAttempt] = field(default_factory=list)

    def transition(self, state: ResolutionState) -> None:
        self.states.append(state)

    @property
    def final_state(self) -> ResolutionState:
        return self.states[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "artist": self.artist,
            "title": self.title,
            "primary_query": vars(self.primary_query) if self.primary_query else None,
            "fallback_query": vars(self.fallback_query) if self.fallback_query else None,
            "states": [str(s) for s in self.states],
            "attempts": [a.to_dict() for a in self.attempts],
        }


class CoverResolver:
    """
    Resolve an artist/album pair to a cover image URL.

    Providers are consulted in list order. Provider failures are absorbed:
    a provider that raises ProviderUnavailable counts as having produced no
    candidates. Every resolution is followed by a fixed cooldown, independent
    of the per-provider rate limits.
    """

    def __init__(
        self,
        providers: Sequence[CoverProvider],
        policy: ScoringPolicy | None = None,
        normalizer: Normalizer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.providers = list(providers)
        self.policy = policy or ScoringPolicy()
        self.normalizer = normalizer or Normalizer()
        self._sleep = sleep

    def resolve(self, artist_name: str, album_title: str) -> ResolvedCover:
        """Resolve to a provider image URL, or DEFAULT_COVER if nothing matched."""
        result, _ = self.resolve_with_trace(artist_name, album_title)
        return result

    def resolve_with_trace(
        self, artist_name: str, album_title: str
    ) -> tuple[ResolvedCover, ResolutionTrace]:
        trace = ResolutionTrace(artist=artist_name, title=album_title)
        try:
            result = self._resolve(artist_name, album_title, trace)
        finally:
            if self.policy.cooldown_seconds > 0:
                self._sleep(self.policy.cooldown_seconds)

        if result.is_default:
            logger.info(f"No cover found for {artist_name} - {album_title}")
        else:
            logger.info(
                f"Resolved cover for {artist_name} - {album_title} via {result.provider} "
                f"(score {result.score}, {result.state})"
            )
        return result, trace

    def resolve_missing(self, records: Iterable[Album], store: AlbumStore) -> list[ResolvedCover]:
        """
        Resolve covers for records that need one, saving each as it completes.

        Sequential; a failure on one record is logged and does not stop the batch.
        """
        results: list[ResolvedCover] = []
        for record in records:
            if not needs_cover(record.cover_url):
                continue
            try:
                resolved = self.resolve(record.artist.name, record.title)
                record.cover_url = resolved.url
                store.save(record)
            except Exception as e:
                logger.warning(f"Cover resolution failed for album {record.id} (continuing): {e}")
                continue
            results.append(resolved)
        return results

    def _resolve(
        self, artist_name: str, album_title: str, trace: ResolutionTrace
    ) -> ResolvedCover:
        primary = CoverQuery(
            artist=self.normalizer.strip_for_query(artist_name),
            title=self.normalizer.strip_for_query(album_title),
        )
        folded = CoverQuery(
            artist=self.normalizer.ascii_fold(primary.artist),
            title=self.normalizer.ascii_fold(primary.title),
        )
        fallback = folded if folded != primary else None
        trace.primary_query = primary
        trace.fallback_query = fallback

        target = self.normalizer.normalize_query(artist_name, album_title)
        below_threshold: list[ScoredCandidate] = []

        for rank, provider in enumerate(self.providers):
            trace.transition(ResolutionState.PROVIDER_ATTEMPT)
            attempt = ProviderAttempt(provider=provider.name)
            trace.attempts.append(attempt)

            candidates = self._search(provider, primary, fallback, attempt)
            scored = sorted(
                (
                    ScoredCandidate(
                        candidate=candidate,
                        score=self.policy.score(candidate, target, self.normalizer),
                        provider=provider,
                        rank=rank,
                        order=order,
                    )
                    for order, candidate in enumerate(candidates)
                ),
                key=lambda sc: sc.sort_key,
            )
            attempt.candidates = len(scored)
            attempt.best_score = scored[0].score if scored else None

            for sc in scored:
                if sc.score < self.policy.acceptance_threshold:
                    below_threshold.append(sc)
                    continue
                url = self._resolve_url(sc, attempt)
                if url:
                    attempt.state = ResolutionState.ACCEPTED
                    trace.transition(ResolutionState.ACCEPTED)
                    return ResolvedCover(
                        url=url,
                        provider=provider.name,
                        score=sc.score,
                        state=ResolutionState.ACCEPTED,
                    )

            attempt.state = ResolutionState.NEXT_PROVIDER
            trace.transition(ResolutionState.NEXT_PROVIDER)

        for sc in sorted(below_threshold, key=lambda sc: sc.sort_key):
            attempt = trace.attempts[sc.rank]
            url = self._resolve_url(sc, attempt)
            if url:
                trace.transition(ResolutionState.FALLBACK)
                logger.debug(
                    f"Using best-effort candidate from {sc.provider.name} with score {sc.score}"
                )
                return ResolvedCover(
                    url=url,
                    provider=sc.provider.name,
                    score=sc.score,
                    state=ResolutionState.FALLBACK,
                )

        trace.transition(ResolutionState.EXHAUSTED)
        return ResolvedCover(url=DEFAULT_COVER, state=ResolutionState.EXHAUSTED)

    def _search(
        self,
        provider: CoverProvider,
        primary: CoverQuery,
        fallback: CoverQuery | None,
        attempt: ProviderAttempt,
    ) -> list[Candidate]:
        limit = self.policy.max_candidates
        try:
            candidates = list(islice(provider.search(primary), limit))
            if not candidates and fallback is not None:
                logger.debug(f"{provider.name}: no results, retrying with ASCII-folded query")
                attempt.used_fallback_query = True
                candidates = list(islice(provider.search(fallback), limit))
        except ProviderUnavailable as e:
            logger.warning(f"Provider {provider.name} failed: {e.reason}")
            attempt.error = e.reason
            return []
        return candidates

    def _resolve_url(self, sc: ScoredCandidate, attempt: ProviderAttempt) -> str | None:
        try:
            return sc.provider.resolve_url(sc.candidate)
        except ProviderUnavailable as e:
            logger.warning(f"Provider {sc.provider.name} could not resolve image URL: {e.reason}")
            attempt.error = e.reason
            return None
