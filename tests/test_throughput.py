import pytest

from netquality.measurements.http_timer import HttpTimer
from netquality.measurements.throughput import ThroughputProbe, bitrate_mbps

FAST_TIMEOUT = (2.0, 2.0)


def test_bitrate_formula():
    assert bitrate_mbps(1_000_000, 8.0) == pytest.approx(1.0)


@pytest.mark.parametrize("elapsed", [0.0, 1.0, 30.0])
def test_zero_bytes_is_exactly_zero(elapsed):
    assert bitrate_mbps(0, elapsed) == 0.0


def test_non_positive_elapsed_is_zero():
    assert bitrate_mbps(1024, 0.0) == 0.0
    assert bitrate_mbps(1024, -1.0) == 0.0


def test_download_reads_up_to_budget(http_server):
    url = http_server.route("GET", "/blob", body=b"x" * 256 * 1024)

    mbps = ThroughputProbe(timeout=FAST_TIMEOUT).download(url, 64 * 1024)

    assert mbps > 0.0


def test_download_of_empty_body_reports_zero(http_server):
    url = http_server.route("GET", "/empty", body=b"")

    assert ThroughputProbe(timeout=FAST_TIMEOUT).download(url, 1024) == 0.0


def test_download_error_status_reports_zero(http_server):
    assert ThroughputProbe(timeout=FAST_TIMEOUT).download(http_server.url("/missing"), 1024) == 0.0


def test_download_unreachable_reports_zero(unreachable_url):
    assert ThroughputProbe(timeout=FAST_TIMEOUT).download(unreachable_url, 1024) == 0.0


def test_upload_posts_fixed_buffer(http_server):
    url = http_server.route("POST", "/post", body=b"{}")

    mbps = ThroughputProbe(timeout=FAST_TIMEOUT).upload(url, 4096)

    assert mbps > 0.0
    (request,) = http_server.hits("POST", "/post")
    assert request["body"] == b"A" * 4096
    assert request["headers"]["Content-Type"] == "application/octet-stream"


def test_upload_unreachable_reports_zero(unreachable_url):
    assert ThroughputProbe(timeout=FAST_TIMEOUT).upload(unreachable_url, 4096) == 0.0


def test_http_timer_measures_status(http_server):
    url = http_server.route("GET", "/", body=b"hello")

    assert HttpTimer(timeout=FAST_TIMEOUT).time(url) > 0.0


def test_http_timer_counts_error_status_as_response(http_server):
    url = http_server.route("GET", "/boom", status=500, body=b"oops")

    assert HttpTimer(timeout=FAST_TIMEOUT).time(url) > 0.0


def test_http_timer_does_not_follow_redirects(http_server):
    target = http_server.route("GET", "/target", body=b"ok")
    url = http_server.route("GET", "/start", status=302, headers={"Location": target})

    assert HttpTimer(timeout=FAST_TIMEOUT).time(url) > 0.0
    assert http_server.hits("GET", "/target") == []


def test_http_timer_unreachable_reports_zero(unreachable_url):
    assert HttpTimer(timeout=FAST_TIMEOUT).time(unreachable_url) == 0.0
