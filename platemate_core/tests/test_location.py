import asyncio

from platemate_core.domain.exceptions import GeocodeError, PermissionDeniedError
from platemate_core.domain.geo import Coordinate, LocationFix
from platemate_core.providers.device import PermissionStatus, Placemark
from platemate_core.services.location import DEFAULT_PLACE_NAME, LocationResolver


class FakePermissions:
    def __init__(self, status=PermissionStatus.NOT_DETERMINED, grant=PermissionStatus.AUTHORIZED_WHEN_IN_USE):
        self.status = status
        self.grant = grant
        self.requests = 0

    async def request_permission(self):
        self.requests += 1
        self.status = self.grant
        return self.status

    def current_status(self):
        return self.status


class FakeLocation:
    def __init__(self):
        self.start_calls = 0
        self.once_calls = 0

    def start_updates(self):
        self.start_calls += 1

    def request_once(self):
        self.once_calls += 1


class FakeGeocoder:
    def __init__(self, placemark=None, error=None):
        self.placemark = placemark or Placemark(sub_locality="Mission", locality="San Francisco")
        self.error = error
        self.calls = 0
        self.gate = None

    async def resolve(self, coordinate):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.placemark


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def delays(self):
        return [h.delay for h in self.handles]

    def fire_next(self):
        pending = [h for h in self.handles if not h.cancelled and h.callback is not None]
        if not pending:
            return False
        handle = pending[0]
        callback, handle.callback = handle.callback, None
        callback()
        return True


def _resolver(permissions, location=None, geocoder=None, scheduler=None):
    return LocationResolver(
        permissions,
        location or FakeLocation(),
        geocoder or FakeGeocoder(),
        scheduler=scheduler or FakeScheduler(),
        retry_base=2.0,
        retry_cap=30.0,
        max_attempts=5,
    )


def test_permission_grant_starts_updates_once():
    async def run():
        perms = FakePermissions()
        loc = FakeLocation()
        resolver = _resolver(perms, loc)
        statuses = []
        resolver.status_changed.connect(statuses.append)

        await resolver.request_permission()
        resolver.handle_authorization_change(PermissionStatus.AUTHORIZED_WHEN_IN_USE)
        return resolver, loc, statuses

    resolver, loc, statuses = asyncio.run(run())
    assert resolver.status is PermissionStatus.AUTHORIZED_WHEN_IN_USE
    assert statuses == [PermissionStatus.AUTHORIZED_WHEN_IN_USE]
    assert loc.start_calls == 1
    assert loc.once_calls == 1


def test_retry_backoff_delays_and_cap():
    async def run():
        perms = FakePermissions(status=PermissionStatus.AUTHORIZED_WHEN_IN_USE)
        loc = FakeLocation()
        scheduler = FakeScheduler()
        resolver = _resolver(perms, loc, scheduler=scheduler)
        resolver.start_retries()
        fired = 0
        while scheduler.fire_next():
            fired += 1
        return resolver, loc, scheduler, fired

    resolver, loc, scheduler, fired = asyncio.run(run())
    assert scheduler.delays == [2.0, 4.0, 8.0, 16.0, 30.0]
    assert fired == 5
    assert loc.start_calls == 5
    assert resolver.retry_schedule is None


def test_retry_halts_when_fix_arrives():
    async def run():
        perms = FakePermissions(status=PermissionStatus.AUTHORIZED_WHEN_IN_USE)
        scheduler = FakeScheduler()
        resolver = _resolver(perms, scheduler=scheduler)
        fixes = []
        resolver.fix_changed.connect(fixes.append)

        resolver.start_retries()
        scheduler.fire_next()
        resolver.handle_fix(LocationFix(latitude=1.0, longitude=2.0))
        await asyncio.sleep(0)
        # 已有定位后再次启动不做任何事
        resolver.start_retries()
        return resolver, scheduler, fixes

    resolver, scheduler, fixes = asyncio.run(run())
    assert resolver.retry_schedule is None
    assert scheduler.delays == [2.0, 4.0]
    assert scheduler.handles[-1].cancelled
    assert len(fixes) == 1
    assert resolver.is_location_available


def test_denied_signals_once_and_halts():
    async def run():
        perms = FakePermissions(status=PermissionStatus.NOT_DETERMINED, grant=PermissionStatus.NOT_DETERMINED)
        scheduler = FakeScheduler()
        resolver = _resolver(perms, scheduler=scheduler)
        denied = []
        resolver.permission_denied.connect(denied.append)

        resolver.start_retries()
        perms.status = PermissionStatus.DENIED
        scheduler.fire_next()
        resolver.start_retries()
        resolver.start_retries()
        return resolver, scheduler, denied

    resolver, scheduler, denied = asyncio.run(run())
    assert denied == [PermissionStatus.DENIED]
    assert resolver.retry_schedule is None
    assert scheduler.delays == [2.0]


def test_retry_requests_permission_when_not_determined():
    async def run():
        perms = FakePermissions(status=PermissionStatus.NOT_DETERMINED)
        loc = FakeLocation()
        scheduler = FakeScheduler()
        resolver = _resolver(perms, loc, scheduler=scheduler)
        resolver.start_retries()
        scheduler.fire_next()
        await asyncio.sleep(0)
        resolver.stop()
        return perms, loc

    perms, loc = asyncio.run(run())
    assert perms.requests == 1
    assert loc.start_calls == 1


def test_geocode_single_flight():
    async def run():
        geocoder = FakeGeocoder()
        geocoder.gate = asyncio.Event()
        resolver = _resolver(FakePermissions(status=PermissionStatus.AUTHORIZED_ALWAYS), geocoder=geocoder)
        names = []
        resolver.place_changed.connect(names.append)

        resolver.handle_fix(LocationFix(latitude=1.0, longitude=2.0))
        await asyncio.sleep(0)
        resolver.handle_fix(LocationFix(latitude=1.1, longitude=2.1))
        assert resolver.geocode_pending
        geocoder.gate.set()
        for _ in range(3):
            await asyncio.sleep(0)
        return resolver, geocoder, names

    resolver, geocoder, names = asyncio.run(run())
    assert geocoder.calls == 1
    assert names == ["Mission"]
    assert resolver.place_name == "Mission"
    assert not resolver.geocode_pending
    assert resolver.current_fix.latitude == 1.1


def test_geocode_error_keeps_place_name():
    async def run():
        geocoder = FakeGeocoder(error=GeocodeError(code="GEOCODE_FAILED", message="no result"))
        resolver = _resolver(FakePermissions(status=PermissionStatus.AUTHORIZED_ALWAYS), geocoder=geocoder)
        resolver.handle_fix(LocationFix(latitude=1.0, longitude=2.0))
        for _ in range(3):
            await asyncio.sleep(0)
        return resolver

    resolver = asyncio.run(run())
    assert resolver.place_name == DEFAULT_PLACE_NAME
    assert not resolver.geocode_pending


def test_geocode_falls_back_to_locality():
    async def run():
        geocoder = FakeGeocoder(placemark=Placemark(sub_locality=None, locality="Oakland"))
        resolver = _resolver(FakePermissions(status=PermissionStatus.AUTHORIZED_ALWAYS), geocoder=geocoder)
        resolver.handle_fix(LocationFix(latitude=1.0, longitude=2.0))
        for _ in range(3):
            await asyncio.sleep(0)
        return resolver

    resolver = asyncio.run(run())
    assert resolver.place_name == "Oakland"
    assert resolver.distance_to(Coordinate(1.0, 2.0)) == 0.0


def test_permission_request_error_counts_as_denied():
    class RaisingPermissions(FakePermissions):
        async def request_permission(self):
            raise PermissionDeniedError(code="PERMISSION_DENIED", message="blocked by policy")

    async def run():
        loc = FakeLocation()
        resolver = _resolver(RaisingPermissions(), loc)
        status = await resolver.request_permission()
        return status, resolver, loc

    status, resolver, loc = asyncio.run(run())
    assert status is PermissionStatus.DENIED
    assert resolver.status is PermissionStatus.DENIED
    assert loc.start_calls == 0
