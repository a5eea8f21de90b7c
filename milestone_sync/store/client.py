"""REST client for the remote record store.

The store is the single source of truth for milestones and submissions.
All responses are normalized here, so callers never see upstream shapes.
"""

import logging
import time
from typing import Optional, Dict, Any, List

import requests
from pydantic import ValidationError

from milestone_sync.errors import NetworkError
from milestone_sync.state.models import Milestone, SubmissionRecord
from milestone_sync.store.normalize import normalize_milestone, normalize_submission, normalize_submissions
from milestone_sync.store.validators import (
    MilestonesEnvelope,
    StoreErrorBody,
    SubmissionCreateRequest,
    SubmissionsEnvelope,
)


logger = logging.getLogger("milestone_sync.store")


class RecordStoreClient:
    """Record store client with retry on transient failures."""

    DEFAULT_TIMEOUT_SEC = 10
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BACKOFF_SECONDS = [0.5, 1, 2]

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: Optional[List[float]] = None,
        session: Optional[requests.Session] = None
    ):
        """Initialize record store client.

        Args:
            base_url: Store base URL (e.g. https://hub.example.org/api)
            api_key: Optional bearer token
            timeout_sec: Per-request timeout
            max_retries: Maximum attempts for transient failures
            backoff_seconds: Delays between attempts
            session: Request session (created if None)
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds or self.DEFAULT_BACKOFF_SECONDS

        # Request session for connection pooling
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "RecordStoreClient":
        """Create client from a StoreConfig."""
        return cls(
            base_url=config.base_url,
            api_key=config.api_key or None,
            timeout_sec=config.timeout_sec,
            max_retries=config.max_retries,
            backoff_seconds=list(config.backoff_seconds)
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _error_from_response(self, response: requests.Response) -> NetworkError:
        try:
            body = StoreErrorBody.model_validate(response.json())
            message, details = body.error, body.details
        except (ValueError, ValidationError):
            message, details = f"HTTP {response.status_code}", None
        return NetworkError(
            code='HTTP_ERROR',
            message=message,
            status_code=response.status_code,
            details={'details': details} if details is not None else None
        )

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Make a request, retrying transport errors and 5xx responses.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            **kwargs: Additional requests arguments

        Returns:
            Decoded JSON body

        Raises:
            NetworkError: If the request ultimately fails
        """
        url = f"{self.base_url}{path}"
        last_error = None

        for attempt in range(self.max_retries):
            try:
                response = self._session.request(
                    method=method,
                    url=url,
                    headers=self._headers(),
                    timeout=self.timeout_sec,
                    **kwargs
                )
            except requests.RequestException as e:
                last_error = NetworkError(
                    code='NETWORK_ERROR',
                    message=str(e) or 'Record store could not be reached',
                    details={'url': url}
                )
            else:
                if 200 <= response.status_code < 300:
                    try:
                        return response.json()
                    except ValueError:
                        raise NetworkError(
                            code='INVALID_RESPONSE',
                            status_code=response.status_code,
                            details={'url': url}
                        )
                last_error = self._error_from_response(response)

            if not last_error.retryable or attempt == self.max_retries - 1:
                break

            backoff = self.backoff_seconds[attempt % len(self.backoff_seconds)]
            logger.warning(
                f"{method} {path} failed ({last_error.message}), "
                f"retrying in {backoff}s (attempt {attempt + 1}/{self.max_retries})"
            )
            time.sleep(backoff)

        logger.error(f"{method} {path} failed: {last_error.message}")
        raise last_error

    def list_submissions(
        self,
        milestone_id: str,
        team_id: Optional[str] = None
    ) -> List[SubmissionRecord]:
        """Fetch submissions for a milestone.

        Args:
            milestone_id: Milestone ID
            team_id: Optional team filter

        Returns:
            Normalized submission records in upstream order

        Raises:
            NetworkError: If the request fails
        """
        params = {"milestoneId": milestone_id}
        if team_id:
            params["teamId"] = team_id

        logger.debug(f"Fetching submissions for milestone {milestone_id} (team {team_id})")
        data = self._request("GET", "/submissions", params=params)

        try:
            envelope = SubmissionsEnvelope.model_validate(data)
        except ValidationError as e:
            raise NetworkError(code='INVALID_RESPONSE', details={'errors': e.errors()})

        return normalize_submissions(envelope.submissions)

    def create_submission(self, request: SubmissionCreateRequest) -> SubmissionRecord:
        """Create a submission.

        Args:
            request: Validated submission request

        Returns:
            The created SubmissionRecord

        Raises:
            NetworkError: If the request fails
        """
        payload = request.to_payload()
        logger.info(f"Creating submission for milestone {request.milestone_id} (team {request.team_id})")

        data = self._request("POST", "/submissions", json=payload)
        if isinstance(data, dict) and isinstance(data.get("submission"), dict):
            data = data["submission"]
        if not isinstance(data, dict) or not data.get("id"):
            raise NetworkError(code='INVALID_RESPONSE', details={'body': data})

        # Older routes echo only the id; fill the rest from the request.
        raw = dict(data)
        raw.setdefault("milestoneId", request.milestone_id)
        raw.setdefault("teamId", request.team_id)
        raw.setdefault("fileUrls", request.file_urls)
        raw.setdefault("link", request.link)
        raw.setdefault("comments", request.comments)
        return normalize_submission(raw)

    def list_milestones(self, cohort_id: str) -> List[Milestone]:
        """Fetch milestones for a cohort, ordered by sequence number.

        Args:
            cohort_id: Cohort ID

        Returns:
            Normalized milestones

        Raises:
            NetworkError: If the request fails
        """
        data = self._request("GET", f"/cohorts/{cohort_id}/milestones")

        try:
            envelope = MilestonesEnvelope.model_validate(data)
        except ValidationError as e:
            raise NetworkError(code='INVALID_RESPONSE', details={'errors': e.errors()})

        milestones = [normalize_milestone(raw) for raw in envelope.milestones]
        milestones.sort(key=lambda m: m.sequence)
        logger.info(f"Found {len(milestones)} milestones for cohort {cohort_id}")
        return milestones

    def close(self):
        """Close the underlying session."""
        self._session.close()
