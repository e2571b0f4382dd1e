from __future__ import annotations

import asyncio

from campus_link.catalog import NetworkCatalog, WifiProfile
from campus_link.events import (
    ALL_RECONNECTS_FAILED,
    RECONNECT_PROGRESS,
    STATUS_CHANGED,
    EventBus,
)
from campus_link.failover import (
    FailoverOptions,
    JoinProgress,
    SsidWatcher,
    WifiFailoverController,
)
from campus_link.network import ConnectivityStatus
from campus_link.wifi import WifiError, WifiInfo

from conftest import FakeAdapter, FakeClock, RecordingSleep, settle


def _profile(ssid: str, priority: int, **kwargs: object) -> WifiProfile:
    kwargs.setdefault("requires_auth", False)
    return WifiProfile(id=f"id-{ssid}", ssid=ssid, password=f"pw-{ssid}", priority=priority, **kwargs)


def _catalog(*profiles: WifiProfile) -> NetworkCatalog:
    return NetworkCatalog(profiles)


class FakeReconnect:
    def __init__(self) -> None:
        self.calls = 0

    async def trigger_reconnect(self) -> bool:
        self.calls += 1
        return True


def _build(
    adapter: FakeAdapter,
    catalog: NetworkCatalog,
    **kwargs: object,
) -> tuple[WifiFailoverController, EventBus, RecordingSleep]:
    events = EventBus()
    sleep = RecordingSleep()
    controller = WifiFailoverController(adapter, catalog, events=events, sleep=sleep, **kwargs)
    return controller, events, sleep


def test_alternates_are_tried_in_priority_order() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter()
        catalog = _catalog(_profile("A", 5), _profile("B", 1), _profile("C", 10))
        controller, events, sleep = _build(adapter, catalog)

        result = await controller.handle_disconnect("A")

        assert result is not None
        assert result.recovered is False
        order = [ssid for ssid, _ in adapter.connect_calls]
        assert order == ["A"] * 3 + ["B"] * 3 + ["C"] * 3
        assert adapter.connect_calls[0] == ("A", "pw-A")
        assert sleep.delays == [2.0, 2.0, 1.0, 2.0, 2.0, 1.0, 2.0, 2.0]

    asyncio.run(_exercise())


def test_total_failure_reports_every_attempted_profile() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(
            connect_results={
                "A": [WifiError("Secrets were required")],
                "B": [False],
                "C": [WifiError("No network with SSID 'C' found")],
            }
        )
        catalog = _catalog(
            _profile("A", 5),
            _profile("B", 1),
            _profile("C", 10),
            _profile("D", 0, auto_connect=False),
        )
        controller, events, _ = _build(adapter, catalog)
        reported: list[dict[str, list[dict[str, object]]]] = []
        events.subscribe(ALL_RECONNECTS_FAILED, reported.append)

        result = await controller.handle_disconnect("A")

        assert result is not None and result.recovered is False
        assert "D" not in {ssid for ssid, _ in adapter.connect_calls}
        assert len(reported) == 1
        assert list(reported[0]) == ["failed_list"]
        failed = reported[0]["failed_list"]
        assert [entry["ssid"] for entry in failed] == ["A", "B", "C"]
        assert [entry["priority"] for entry in failed] == [5, 1, 10]
        assert all(entry["reason"] for entry in failed)
        assert "Secrets were required" in failed[0]["reason"]
        assert controller.is_running is False
        assert controller.last_result is result

    asyncio.run(_exercise())


def test_progress_events_for_same_network_recovery() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(connect_results={"A": [False, True]})
        refreshed = ConnectivityStatus(connected=True, authenticated=True, ssid="A")

        async def _refresh() -> ConnectivityStatus:
            return refreshed

        controller, events, sleep = _build(
            adapter, _catalog(_profile("A", 0)), status_refresher=_refresh
        )

        result = await controller.handle_disconnect("A")

        assert result is not None
        assert result.recovered is True
        assert result.ssid == "A"
        assert result.failures == []
        progress = [event.payload for event in reversed(events.recent(name=RECONNECT_PROGRESS))]
        assert all(isinstance(item, JoinProgress) for item in progress)
        assert [(item.attempt, item.status) for item in progress] == [
            (1, "connecting"),
            (2, "connecting"),
            (2, "success"),
        ]
        assert all(item.ssid == "A" and item.max_attempts == 3 for item in progress)
        assert sleep.delays == [2.0, 3.0]
        status_events = events.recent(name=STATUS_CHANGED)
        assert len(status_events) == 1
        assert status_events[0].payload is refreshed

    asyncio.run(_exercise())


def test_switching_to_alternate_triggers_portal_login() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(connect_results={"B": [True]})
        reconnect = FakeReconnect()
        catalog = _catalog(
            _profile("A", 5),
            _profile("B", 1, requires_auth=True, linked_account_id="acct-1"),
        )
        controller, _, sleep = _build(adapter, catalog, reconnect_service=reconnect)

        result = await controller.handle_disconnect("A")

        assert result is not None
        assert result.recovered is True
        assert result.ssid == "B"
        assert [record.ssid for record in result.failures] == ["A"]
        assert reconnect.calls == 1
        assert sleep.delays[-1] == 3.0

    asyncio.run(_exercise())


def test_open_network_does_not_trigger_portal_login() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(connect_results={"A": [True]})
        reconnect = FakeReconnect()
        controller, _, _ = _build(
            adapter, _catalog(_profile("A", 0)), reconnect_service=reconnect
        )

        await controller.handle_disconnect("A")

        assert reconnect.calls == 0

    asyncio.run(_exercise())


def test_unknown_or_manual_networks_are_skipped() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter()
        catalog = _catalog(_profile("Manual", 0, auto_connect=False))
        controller, _, _ = _build(adapter, catalog)

        assert await controller.handle_disconnect("Elsewhere") is None
        assert await controller.handle_disconnect("Manual") is None
        assert adapter.connect_calls == []

    asyncio.run(_exercise())


def test_concurrent_disconnect_is_ignored_while_running() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(connect_results={"A": [True]})
        adapter.connect_gate = asyncio.Event()
        controller, _, _ = _build(adapter, _catalog(_profile("A", 0)))

        first = asyncio.create_task(controller.handle_disconnect("A"))
        await settle()
        assert controller.is_running is True
        assert await controller.handle_disconnect("A") is None

        adapter.connect_gate.set()
        result = await first
        assert result is not None and result.recovered is True
        assert controller.is_running is False
        assert len(adapter.connect_calls) == 1

    asyncio.run(_exercise())


def test_running_flag_resets_after_crash() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(connect_results={"A": [True]})

        async def _broken_refresh() -> ConnectivityStatus:
            raise RuntimeError("probe unavailable")

        class _ExplodingReconnect:
            async def trigger_reconnect(self) -> bool:
                raise RuntimeError("auth subsystem crashed")

        controller, _, _ = _build(
            adapter,
            _catalog(_profile("A", 0, requires_auth=True, linked_account_id="acct")),
            status_refresher=_broken_refresh,
            reconnect_service=_ExplodingReconnect(),
        )

        try:
            await controller.handle_disconnect("A")
        except RuntimeError:
            pass

        assert controller.is_running is False

    asyncio.run(_exercise())


def test_set_catalog_applies_to_next_flow() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(connect_results={"B": [True]})
        controller, _, _ = _build(
            adapter,
            _catalog(_profile("A", 0)),
            options=FailoverOptions(max_attempts=1),
        )
        controller.set_catalog(_catalog(_profile("A", 0), _profile("B", 3)))

        result = await controller.handle_disconnect("A")

        assert result is not None and result.ssid == "B"
        assert [ssid for ssid, _ in adapter.connect_calls] == ["A", "B"]

    asyncio.run(_exercise())


def test_set_options_limits_joins_per_network() -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter()
        controller, _, _ = _build(adapter, _catalog(_profile("A", 0), _profile("B", 1)))

        updated = controller.set_options(max_attempts=1)

        assert updated.max_attempts == 1
        assert controller.options is updated
        result = await controller.handle_disconnect("A")
        assert result is not None and result.recovered is False
        assert [ssid for ssid, _ in adapter.connect_calls] == ["A", "B"]

    asyncio.run(_exercise())


def test_ssid_watcher_starts_failover_when_ssid_disappears(clock: FakeClock) -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(
            current=[WifiInfo(ssid="A", connected=True), None],
            connect_results={"A": [True]},
        )
        controller, _, _ = _build(adapter, _catalog(_profile("A", 0)))
        changes: list[str | None] = []
        watcher = SsidWatcher(
            adapter, controller, interval=3.0, on_change=changes.append, sleep=clock.sleep
        )

        await watcher.start()
        assert watcher.last_ssid == "A"

        await clock.advance(3.0)
        assert watcher.last_ssid is None
        task = watcher.failover_task
        assert task is not None
        result = await task

        assert result is not None and result.recovered is True
        assert changes == ["A", None]
        await watcher.aclose()
        assert watcher.is_running is False

    asyncio.run(_exercise())


def test_ssid_watcher_treats_read_errors_as_disconnect(clock: FakeClock) -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(
            current=[WifiInfo(ssid="A", connected=True), WifiError("nmcli timed out")],
        )
        controller, _, _ = _build(adapter, _catalog(_profile("A", 0, auto_connect=False)))
        watcher = SsidWatcher(adapter, controller, interval=3.0, sleep=clock.sleep)

        await watcher.start()
        await clock.advance(3.0)

        assert watcher.last_ssid is None
        task = watcher.failover_task
        assert task is not None
        assert await task is None
        await watcher.aclose()

    asyncio.run(_exercise())


def test_ssid_watcher_ignores_switches_between_networks(clock: FakeClock) -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(
            current=[WifiInfo(ssid="A", connected=True), WifiInfo(ssid="B", connected=True)],
        )
        controller, _, _ = _build(adapter, _catalog(_profile("A", 0)))
        watcher = SsidWatcher(adapter, controller, interval=3.0, sleep=clock.sleep)

        await watcher.start()
        await clock.advance(3.0)

        assert watcher.last_ssid == "B"
        assert watcher.failover_task is None
        await watcher.aclose()

    asyncio.run(_exercise())


def test_ssid_watcher_restart_keeps_last_ssid(clock: FakeClock) -> None:
    async def _exercise() -> None:
        adapter = FakeAdapter(
            current=[WifiInfo(ssid="A", connected=True), None],
            connect_results={"A": [True]},
        )
        controller, _, _ = _build(adapter, _catalog(_profile("A", 0)))
        watcher = SsidWatcher(adapter, controller, interval=3.0, sleep=clock.sleep)

        await watcher.start()
        await watcher.start(interval=10.0, immediate=False)

        assert watcher.interval == 10.0
        assert watcher.is_running is True
        assert watcher.last_ssid == "A"

        await clock.advance(3.0)
        assert watcher.last_ssid == "A"
        assert watcher.failover_task is None

        await clock.advance(7.0)
        assert watcher.last_ssid is None
        task = watcher.failover_task
        assert task is not None
        result = await task
        assert result is not None and result.ssid == "A"
        await watcher.aclose()

    asyncio.run(_exercise())
