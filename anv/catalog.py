#!/usr/bin/env python3
import logging
from typing import Any, Dict, List, Optional

from curl_cffi import requests
from curl_cffi.curl import CurlError
from curl_cffi.requests.exceptions import RequestException

from .config import (
    API_URL, BASE_URL, HEADERS, REFERER,
    PREFERRED_PROVIDERS, REQUEST_TIMEOUT, SEARCH_LIMIT
)
from .errors import CatalogEmpty, CatalogUnreachable, NoEpisodesAvailable, StreamUnavailable
from .models import (
    Availability, EpisodeCounts, EpisodeList, SeriesMatch, StreamCandidate, TranslationMode
)

logger = logging.getLogger(__name__)


SEARCH_SHOWS_QUERY = """query($search: SearchInput, $limit: Int, $page: Int, $translationType: VaildTranslationTypeEnumType, $countryOrigin: VaildCountryOriginEnumType) {
  shows(search: $search, limit: $limit, page: $page, translationType: $translationType, countryOrigin: $countryOrigin) {
    edges {
      _id
      name
      availableEpisodes
    }
  }
}"""

SHOW_DETAIL_QUERY = """query($showId: String!) {
  show(_id: $showId) {
    _id
    name
    availableEpisodesDetail
  }
}"""

EPISODE_SOURCES_QUERY = """query($showId: String!, $translationType: VaildTranslationTypeEnumType!, $episodeString: String!) {
  episode(showId: $showId, translationType: $translationType, episodeString: $episodeString) {
    episodeString
    sourceUrls
  }
}"""

# Provider paths are "--" followed by hex pairs; each pair is a character code XOR 0x38.
PATH_XOR_KEY = 0x38
PATH_ALPHABET = set(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    "-._~:/?#[]@!$&()*+,;=%"
)


def decode_provider_path(raw: str) -> Optional[str]:
    if not raw or not raw.startswith("--"):
        return None
    payload = raw[2:]
    if len(payload) % 2 != 0:
        return None

    chars = []
    for i in range(0, len(payload), 2):
        try:
            ch = chr(int(payload[i:i + 2], 16) ^ PATH_XOR_KEY)
        except ValueError:
            return None
        if ch not in PATH_ALPHABET:
            return None
        chars.append(ch)

    decoded = "".join(chars)
    if "/clock" in decoded and ".json" not in decoded:
        decoded = decoded.replace("/clock", "/clock.json", 1)
    return decoded


def quality_rank(label: Optional[str]) -> int:
    if not label or label.strip().lower() == "auto":
        return 10_000
    try:
        return int(label.strip().lower().rstrip("p"))
    except ValueError:
        return 0


def pick_subtitle(subtitles: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    if not isinstance(subtitles, list):
        return None
    for sub in subtitles:
        if not isinstance(sub, dict):
            continue
        if sub.get("lang") == "en" or sub.get("label") == "English":
            return sub.get("src")
    return None


def _count(value) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def build_candidate(provider: str, link: Dict[str, Any]) -> Optional[StreamCandidate]:
    url = link.get("link")
    if not url or not isinstance(url, str):
        return None

    quality_label = str(link.get("resolutionStr") or "auto")
    raw_headers = link.get("headers")
    headers = {str(k): str(v) for k, v in raw_headers.items()} if isinstance(raw_headers, dict) else {}
    if not any(k.lower() == "referer" for k in headers):
        headers["Referer"] = REFERER

    return StreamCandidate(
        url=url,
        quality=quality_rank(quality_label),
        quality_label=quality_label,
        container_hint="hls" if link.get("hls") else "mp4",
        provider=provider,
        requires_headers=headers,
        subtitle_track=pick_subtitle(link.get("subtitles")),
    )


class CatalogClient:
    """Synchronous client for the AllAnime GraphQL catalog."""

    def __init__(self, session=None, api_url: str = API_URL, base_url: str = BASE_URL):
        self.session = session or requests.Session(impersonate="chrome120")
        self.session.headers.update(HEADERS)
        self.api_url = api_url
        self.base_url = base_url.rstrip('/')

    def _post(self, query: str, variables: Dict[str, Any], what: str) -> Dict[str, Any]:
        body = {"query": query, "variables": variables}
        try:
            response = self.session.post(self.api_url, json=body, timeout=REQUEST_TIMEOUT)
        except (RequestException, CurlError) as e:
            raise CatalogUnreachable(f"{what} failed: {e}") from e

        if response.status_code >= 400:
            raise CatalogUnreachable(
                f"{what} failed: HTTP {response.status_code}", status=response.status_code
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise CatalogUnreachable(f"{what} returned an unparsable response") from e
        if not isinstance(envelope, dict):
            raise CatalogUnreachable(f"{what} returned an unexpected response")

        errors = envelope.get("errors")
        if errors:
            joined = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors
            )
            raise CatalogUnreachable(f"{what} failed: {joined}")

        data = envelope.get("data")
        if not isinstance(data, dict):
            raise CatalogUnreachable(f"{what} returned an empty response")
        return data

    def search(self, query: str, translation: TranslationMode = TranslationMode.SUB) -> List[SeriesMatch]:
        variables = {
            "search": {
                "allowAdult": False,
                "allowUnknown": False,
                "query": query,
            },
            "limit": SEARCH_LIMIT,
            "page": 1,
            "translationType": translation.value,
            "countryOrigin": "ALL",
        }
        data = self._post(SEARCH_SHOWS_QUERY, variables, "Search")
        shows = data.get("shows")
        edges = shows.get("edges") if isinstance(shows, dict) else None
        if not isinstance(edges, list):
            edges = []

        results = []
        for edge in edges:
            if not isinstance(edge, dict) or not edge.get("_id"):
                continue
            counts = edge.get("availableEpisodes")
            if not isinstance(counts, dict):
                counts = {}
            sub = _count(counts.get("sub"))
            dub = _count(counts.get("dub"))
            results.append(SeriesMatch(
                id=edge["_id"],
                title=edge.get("name") or edge["_id"],
                translation_available=Availability(sub=sub > 0, dub=dub > 0),
                episode_counts=EpisodeCounts(sub=sub, dub=dub),
            ))

        logger.debug("Search %r (%s) returned %d shows", query, translation.value, len(results))
        if not results:
            raise CatalogEmpty(query, translation.label)
        return results

    def list_episodes(self, series_id: str, translation: TranslationMode, title: str = "") -> EpisodeList:
        data = self._post(SHOW_DETAIL_QUERY, {"showId": series_id}, "Episode list")
        show = data.get("show")
        if not isinstance(show, dict):
            show = {}
        detail = show.get("availableEpisodesDetail")
        listed = detail.get(translation.value) if isinstance(detail, dict) else None
        labels = [str(ep) for ep in listed] if isinstance(listed, list) else []

        if not labels:
            raise NoEpisodesAvailable(series_id, translation.label, title or show.get("name", ""))
        return EpisodeList(series_id=series_id, translation=translation, episodes=labels)

    def _fetch_sources(self, series_id: str, translation: TranslationMode, episode: str) -> List[Dict[str, Any]]:
        variables = {
            "showId": series_id,
            "translationType": translation.value,
            "episodeString": episode,
        }
        try:
            data = self._post(EPISODE_SOURCES_QUERY, variables, "Stream lookup")
        except CatalogUnreachable as e:
            if e.status == 400:
                raise StreamUnavailable(
                    series_id, translation.label, episode, "not yet available"
                ) from e
            raise

        episode_data = data.get("episode")
        sources = episode_data.get("sourceUrls") if isinstance(episode_data, dict) else None
        if not isinstance(sources, list):
            return []
        return [
            s for s in sources
            if isinstance(s, dict) and isinstance(s.get("sourceUrl"), str) and s.get("sourceName")
        ]

    def _fetch_links(self, path: str) -> List[Dict[str, Any]]:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        response = self.session.get(url, timeout=REQUEST_TIMEOUT)
        if response.status_code >= 400:
            raise CatalogUnreachable(f"HTTP {response.status_code} from {url}", status=response.status_code)
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"unexpected link list payload from {url}")
        links = payload.get("links") or []
        if not isinstance(links, list) or not all(isinstance(link, dict) for link in links):
            raise ValueError(f"malformed links from {url}")
        return links

    def resolve_streams(self, series_id: str, translation: TranslationMode, episode: str) -> List[StreamCandidate]:
        sources = self._fetch_sources(series_id, translation, episode)
        by_name = {s["sourceName"]: s for s in sources}

        for provider in PREFERRED_PROVIDERS:
            source = by_name.get(provider)
            if not source:
                continue

            path = decode_provider_path(source["sourceUrl"])
            if not path:
                logger.debug("Provider %s: undecodable source path", provider)
                continue

            try:
                links = self._fetch_links(path)
            except (RequestException, CurlError, CatalogUnreachable, ValueError) as e:
                logger.debug("Provider %s: link list failed: %s", provider, e)
                continue

            candidates = [c for c in (build_candidate(provider, link) for link in links) if c]
            if candidates:
                logger.debug("Provider %s: %d candidates", provider, len(candidates))
                return candidates

        raise StreamUnavailable(series_id, translation.label, episode, "no supported providers")
