import requests

from perf_triage.config import Settings
from perf_triage.results import OutcomeStatus
from perf_triage.system_info import collect_system_identity, cpu_model, fetch_cloud_identity

BASE = "http://169.254.169.254"
DOCUMENT = {
    "instanceId": "i-0abc123",
    "instanceType": "m5.large",
    "region": "eu-west-1",
    "availabilityZone": "eu-west-1a",
    "accountId": "123456789012",
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeMetadataSession:
    def __init__(self, identity=None, failure=None):
        self.identity = identity or FakeResponse(payload=DOCUMENT)
        self.failure = failure
        self.calls = []

    def put(self, url, headers=None, timeout=None):
        self.calls.append(("PUT", url, headers, timeout))
        if self.failure:
            raise self.failure
        return FakeResponse(text="token-123")

    def get(self, url, headers=None, timeout=None):
        self.calls.append(("GET", url, headers, timeout))
        return self.identity


def test_identity_document_is_parsed():
    session = FakeMetadataSession()
    outcome = fetch_cloud_identity(BASE, timeout=2.0, session=session)
    assert outcome.is_ok
    assert outcome.value.instance_id == "i-0abc123"
    assert outcome.value.availability_zone == "eu-west-1a"
    assert str(outcome.value) == "i-0abc123 (m5.large, eu-west-1a)"
    method, url, headers, timeout = session.calls[1]
    assert url == BASE + "/latest/dynamic/instance-identity/document"
    assert headers == {"X-aws-ec2-metadata-token": "token-123"}
    assert timeout == 2.0


def test_unreachable_metadata_is_unavailable():
    outcome = fetch_cloud_identity(BASE, session=FakeMetadataSession(failure=requests.ConnectTimeout("timed out")))
    assert outcome.status is OutcomeStatus.UNAVAILABLE
    assert outcome.describe() == "not available"


def test_server_error_is_an_error():
    outcome = fetch_cloud_identity(BASE, session=FakeMetadataSession(identity=FakeResponse(status_code=500)))
    assert outcome.status is OutcomeStatus.ERROR
    assert "500" in outcome.detail


def test_malformed_document_is_an_error():
    outcome = fetch_cloud_identity(BASE, session=FakeMetadataSession(identity=FakeResponse(payload={"region": "x"})))
    assert outcome.status is OutcomeStatus.ERROR


def test_cpu_model_from_cpuinfo(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("processor\t: 0\nmodel name\t: Example CPU @ 3.00GHz\n")
    assert cpu_model(cpuinfo) == "Example CPU @ 3.00GHz"


def test_collect_identity_survives_missing_cloud():
    identity = collect_system_identity(Settings(), session=FakeMetadataSession(failure=requests.ConnectionError("refused")))
    assert identity.hostname
    assert identity.logical_cpus >= 1
    assert identity.cloud.status is OutcomeStatus.UNAVAILABLE
