import requests

from musicl_sync.notifier import NullNotifier, PodpingNotifier

FEED_URL = "https://cdn.example.com/docs/show.xml"


def test_announce_sends_feed_url_and_token(session_factory, response_factory):
    session = session_factory(lambda *args: response_factory(status_code=200))
    notifier = PodpingNotifier("token-123", endpoint="https://podping.example/", session=session)

    result = notifier.announce(FEED_URL)

    assert result.accepted
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://podping.example/")
    assert kwargs["params"] == {"url": FEED_URL, "reason": "update", "medium": "musicL"}
    assert kwargs["headers"] == {"Authorization": "token-123"}


def test_announce_without_token_is_skipped(session_factory, caplog):
    session = session_factory(lambda *args: None)
    notifier = PodpingNotifier(None, session=session)

    with caplog.at_level("WARNING"):
        result = notifier.announce(FEED_URL)

    assert not result.accepted
    assert session.calls == []
    assert "PODPING_AUTH_TOKEN" in caplog.text


def test_announce_reports_rejection(session_factory, response_factory):
    session = session_factory(lambda *args: response_factory(status_code=401))

    result = PodpingNotifier("bad", session=session).announce(FEED_URL)

    assert not result.accepted
    assert result.message == "Status 401"


def test_announce_never_raises_on_network_errors(session_factory):
    def handler(*args):
        raise requests.ConnectionError("unreachable")

    result = PodpingNotifier("token", session=session_factory(handler)).announce(FEED_URL)

    assert not result.accepted
    assert "unreachable" in result.message


def test_null_notifier_accepts_nothing():
    assert not NullNotifier().announce(FEED_URL).accepted
