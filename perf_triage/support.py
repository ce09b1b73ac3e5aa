"""Support case submission for runs that found bottlenecks."""

from __future__ import annotations

import base64
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

import requests

from .config import Settings
from .diagnostics import highest_impact
from .errors import SubmissionFailure
from .logger import get_logger
from .report import DiagnosticReport, render_report, render_support_body
from .results import Outcome, OutcomeStatus

log = get_logger("Support")

Attachment = Tuple[str, bytes]

AUTH_GUIDANCE = "Check the support API token and that it is allowed to create cases."
PLAN_GUIDANCE = (
    "The current support plan cannot open cases through the API. "
    "Open the case manually and attach the report file."
)
NETWORK_GUIDANCE = "Check outbound HTTPS access to the ticketing endpoint, then rerun with --create-support-case."


class SupportCaseSubmitter(Protocol):
    def submit(
        self,
        subject: str,
        service_code: str,
        severity: str,
        category: str,
        body: str,
        attachments: Sequence[Attachment],
    ) -> Outcome[str]:
        """Open a case and return its id."""


class HttpSupportCaseSubmitter:
    """Talks to a JSON ticketing API.

    A case is created first, then the attachments are uploaded as one
    attachment set and linked to the case with a follow-up communication.
    """

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        language: str = "en",
        issue_type: str = "technical",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.token = token
        self.language = language
        self.issue_type = issue_type
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["HttpSupportCaseSubmitter"]:
        if not settings.support_endpoint:
            return None
        return cls(
            settings.support_endpoint,
            token=settings.support_token,
            language=settings.support_language,
            issue_type=settings.support_issue_type,
            timeout=settings.support_timeout,
        )

    def submit(
        self,
        subject: str,
        service_code: str,
        severity: str,
        category: str,
        body: str,
        attachments: Sequence[Attachment],
    ) -> Outcome[str]:
        try:
            created = self._post(
                "/cases",
                {
                    "subject": subject,
                    "serviceCode": service_code,
                    "severityCode": severity,
                    "categoryCode": category,
                    "communicationBody": body,
                    "language": self.language,
                    "issueType": self.issue_type,
                },
            )
            case_id = str(created["caseId"])
        except (requests.Timeout, requests.ConnectionError) as exc:
            log.error("Ticketing endpoint unreachable: {}", exc)
            return Outcome.unavailable(f"{exc}. {NETWORK_GUIDANCE}")
        except requests.RequestException as exc:
            log.error("Support case request failed: {}", exc)
            return Outcome.error(str(exc))
        except SubmissionFailure as exc:
            log.error("Support case rejected: {}", exc)
            return Outcome.error(f"{exc}. {exc.guidance}".strip())
        except KeyError:
            return Outcome.error("ticketing API response did not include a caseId")
        log.info("Opened support case {}", case_id)

        if not attachments:
            return Outcome.ok(case_id)
        try:
            attachment_set = self._post(
                "/attachment-sets",
                {
                    "attachments": [
                        {"fileName": name, "data": base64.b64encode(data).decode("ascii")}
                        for name, data in attachments
                    ]
                },
            )
            self._post(
                f"/cases/{case_id}/communications",
                {
                    "communicationBody": "Full diagnostic report attached.",
                    "attachmentSetId": attachment_set["attachmentSetId"],
                },
            )
        except (requests.RequestException, SubmissionFailure, KeyError) as exc:
            log.warning("Case {} opened but the report could not be attached: {}", case_id, exc)
            return Outcome(OutcomeStatus.OK, value=case_id, detail=f"report not attached: {exc}")
        return Outcome.ok(case_id)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.session.post(self.endpoint + path, json=payload, headers=self._headers(), timeout=self.timeout)
        if response.status_code in (401, 403):
            raise SubmissionFailure(f"authentication rejected (HTTP {response.status_code})", AUTH_GUIDANCE)
        if response.status_code >= 400:
            code = _error_code(response)
            if code == "SubscriptionRequiredException":
                raise SubmissionFailure("support plan not eligible", PLAN_GUIDANCE)
            raise SubmissionFailure(f"ticketing API returned HTTP {response.status_code}: {code or response.text[:200]}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise SubmissionFailure(f"ticketing API returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SubmissionFailure(f"ticketing API returned {type(payload).__name__}, expected a JSON object")
        return payload


def _error_code(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("code") or payload.get("__type") or "")
    return ""


def build_subject(report: DiagnosticReport) -> str:
    top = highest_impact(report.findings)
    host = report.identity.hostname if report.identity else "unknown host"
    level = top.label if top else "None"
    return f"[{report.tool_name}] {len(report.findings)} performance bottleneck(s) on {host}, highest impact {level}"


def submit_findings(
    report: DiagnosticReport,
    submitter: Optional[SupportCaseSubmitter],
    severity: str,
    settings: Settings,
    requested: bool = True,
) -> Optional[Outcome[str]]:
    """Open a case for a finalized report; ``None`` means submission was skipped."""
    if not requested:
        return None
    if report.healthy:
        log.info("No findings; support case not needed")
        return None
    if submitter is None:
        return Outcome.unavailable("no ticketing endpoint configured (support.endpoint)")
    return submitter.submit(
        subject=build_subject(report),
        service_code=settings.support_service_code,
        severity=severity,
        category=settings.support_category_code,
        body=render_support_body(report),
        attachments=[(report.artifact_path.name, render_report(report).encode("utf-8"))],
    )
