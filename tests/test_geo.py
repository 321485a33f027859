import asyncio

import requests

from sshpanel.geo import IpLocator, is_local_address
from sshpanel.models import LOCAL_GEO, UNKNOWN_GEO, GeoInfo

OK_BODY = {"status": "success", "country": "Germany", "countryCode": "DE", "city": "Berlin"}


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []
        self.timeouts = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        self.timeouts.append(timeout)
        r = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(r, Exception):
            raise r
        return r


class Clock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def test_second_lookup_served_from_cache():
    clock = Clock()
    session = FakeSession(FakeResponse(200, OK_BODY))
    loc = IpLocator(session=session, url="http://geo/{ip}", timeout=1.5, clock=clock)

    first = asyncio.run(loc.locate("8.8.8.8"))
    clock.t += 10
    second = asyncio.run(loc.locate("8.8.8.8"))

    assert first == second == GeoInfo("Germany", "DE", "Berlin")
    assert session.urls == ["http://geo/8.8.8.8"]
    assert session.timeouts == [1.5]


def test_positive_results_do_not_expire():
    clock = Clock()
    session = FakeSession(FakeResponse(200, OK_BODY))
    loc = IpLocator(session=session, clock=clock)
    asyncio.run(loc.locate("8.8.8.8"))
    clock.t += 10 ** 6
    asyncio.run(loc.locate("8.8.8.8"))
    assert len(session.urls) == 1


def test_failures_are_cached_briefly():
    clock = Clock()
    session = FakeSession(requests.Timeout("slow"), FakeResponse(200, OK_BODY))
    loc = IpLocator(session=session, negative_ttl=60, clock=clock)

    assert asyncio.run(loc.locate("8.8.8.8")) == UNKNOWN_GEO
    clock.t += 30
    assert asyncio.run(loc.locate("8.8.8.8")) == UNKNOWN_GEO
    assert len(session.urls) == 1

    clock.t += 31
    assert asyncio.run(loc.locate("8.8.8.8")) == GeoInfo("Germany", "DE", "Berlin")
    assert len(session.urls) == 2


def test_non_success_answers_are_unknown():
    for resp in (
        FakeResponse(500, OK_BODY),
        FakeResponse(200, {"status": "fail", "message": "reserved range"}),
        FakeResponse(200, ValueError("not json")),
        requests.ConnectionError("refused"),
    ):
        loc = IpLocator(session=FakeSession(resp), clock=Clock())
        assert asyncio.run(loc.locate("8.8.8.8")) == UNKNOWN_GEO


def test_private_addresses_never_hit_the_network():
    session = FakeSession(FakeResponse(200, OK_BODY))
    loc = IpLocator(session=session, clock=Clock())
    for addr in ("127.0.0.1", "10.1.2.3", "192.168.1.1", "::1", "fe80::1", "::ffff:10.0.0.1"):
        assert asyncio.run(loc.locate(addr)) == LOCAL_GEO
    assert session.urls == []
    assert asyncio.run(loc.locate("")) == UNKNOWN_GEO


def test_concurrent_lookups_share_one_request():
    session = FakeSession(FakeResponse(200, OK_BODY))
    loc = IpLocator(session=session, clock=Clock())

    async def both():
        return await asyncio.gather(loc.locate("8.8.8.8"), loc.locate("8.8.8.8"))

    a, b = asyncio.run(both())
    assert a == b == GeoInfo("Germany", "DE", "Berlin")
    assert len(session.urls) == 1


def test_is_local_address():
    assert is_local_address("127.0.0.1")
    assert is_local_address("172.16.0.1")
    assert not is_local_address("8.8.8.8")
    assert not is_local_address("not-an-ip")
