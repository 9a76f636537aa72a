"""
Tests for mDNS service discovery: name codec, event handling, lifecycle, active refresh
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from zeroconf import ServiceStateChange

from discovery import (
    SERVICE_TYPE, DiscoveryEvent, DiscoveryEventType, EdgeServiceDiscovery, EdgeStatus,
    address_from_service_name, edge_service_name
)


class FakeAsyncZeroconf:
    instances = []

    def __init__(self, ip_version=None):
        self.zeroconf = MagicMock(name="zeroconf")
        self.async_close = AsyncMock()
        FakeAsyncZeroconf.instances.append(self)


@pytest.fixture
def browser():
    fake = MagicMock(name="browser")
    fake.async_cancel = AsyncMock()
    return fake


@pytest.fixture
def browser_factory(browser):
    return MagicMock(return_value=browser)


@pytest.fixture
def make_discovery(registry, fake_probe_factory, browser_factory):
    created = []

    def factory(responses=None, **config):
        probe = fake_probe_factory(responses)
        discovery = EdgeServiceDiscovery(
            config, registry, probe, edge_port=8080,
            zeroconf_factory=FakeAsyncZeroconf, browser_factory=browser_factory
        )
        created.append(discovery)
        return discovery

    yield factory


class TestServiceNameCodec:

    def test_encode(self):
        assert edge_service_name("192.168.1.10") == "EdgeServer_192-168-1-10"

    def test_encode_rejects_non_ipv4(self):
        with pytest.raises(ValueError):
            edge_service_name("fe80::1")

    @pytest.mark.parametrize("name", [
        "EdgeServer_192-168-1-10",
        "EdgeServer_192-168-1-10._proxy-edge._tcp.local.",
    ])
    def test_decode(self, name):
        assert address_from_service_name(name, SERVICE_TYPE) == "192.168.1.10"

    @pytest.mark.parametrize("name", [
        "",
        "Printer_192-168-1-10",
        "EdgeServer_192.168.1.10",
        "EdgeServer_192-168-1",
        "EdgeServer_300-168-1-10",
        "EdgeServer_fe80--1",
        "EdgeServer_192-168-1-10-extra",
    ])
    def test_decode_rejects_non_matching(self, name):
        assert address_from_service_name(name, SERVICE_TYPE) is None

    def test_round_trip(self):
        assert address_from_service_name(edge_service_name("10.0.60.254")) == "10.0.60.254"


class TestEventHandling:

    async def test_lost_event_removes_decoded_address(self, registry, make_discovery):
        registry.upsert("192.168.1.10", "80%", "Charging")
        registry.upsert("192.168.1.11", "70%", "Charging")
        discovery = make_discovery()

        await discovery.handle_event(DiscoveryEvent(DiscoveryEventType.LOST, "EdgeServer_192-168-1-10"))

        assert registry.get("192.168.1.10") is None
        assert registry.get("192.168.1.11") is not None

    async def test_lost_event_with_unknown_name_changes_nothing(self, registry, make_discovery, caplog):
        registry.upsert("192.168.1.10", "80%", "Charging")
        discovery = make_discovery()

        with caplog.at_level(logging.WARNING):
            await discovery.handle_event(DiscoveryEvent(DiscoveryEventType.LOST, "SomePrinter._ipp._tcp.local."))

        assert registry.get("192.168.1.10") is not None
        assert "does not encode an edge address" in caplog.text

    async def test_resolved_event_probes_and_upserts(self, registry, make_discovery):
        discovery = make_discovery({"10.0.0.5": ("64.0%", "Discharging")})

        await discovery.handle_event(
            DiscoveryEvent(DiscoveryEventType.RESOLVED, "EdgeServer_10-0-0-5", "10.0.0.5", 8181)
        )

        edge = registry.get("10.0.0.5")
        assert edge.battery_level == "64.0%"
        assert edge.status == "Discharging"
        assert discovery.probe.calls == [("10.0.0.5", 8181)]

    async def test_resolved_event_probe_failure_leaves_registry_unchanged(self, registry, make_discovery):
        registry.upsert("10.0.0.5", "30%", "Charging")
        before = registry.get("10.0.0.5")
        discovery = make_discovery({})

        await discovery.handle_event(
            DiscoveryEvent(DiscoveryEventType.RESOLVED, "EdgeServer_10-0-0-5", "10.0.0.5", 8080)
        )

        assert registry.get("10.0.0.5") == before

    async def test_found_event_with_failed_resolution_publishes_nothing(self, registry, make_discovery):
        discovery = make_discovery()
        discovery.resolve_service = AsyncMock(return_value=None)
        discovery.publish = MagicMock()

        await discovery.handle_event(DiscoveryEvent(DiscoveryEventType.FOUND, "EdgeServer_10-0-0-5"))

        discovery.publish.assert_not_called()
        assert len(registry) == 0

    async def test_handler_errors_do_not_escape(self, registry, make_discovery):
        discovery = make_discovery()
        discovery.resolve_service = AsyncMock(side_effect=RuntimeError("mdns exploded"))

        await discovery.handle_event(DiscoveryEvent(DiscoveryEventType.FOUND, "EdgeServer_10-0-0-5"))

        assert len(registry) == 0


class TestLifecycle:

    async def test_start_is_idempotent(self, make_discovery, browser_factory, caplog):
        discovery = make_discovery()

        await discovery.start_discovery()
        with caplog.at_level(logging.WARNING):
            await discovery.start_discovery()

        assert discovery.is_active
        assert browser_factory.call_count == 1
        args, kwargs = browser_factory.call_args
        assert args[1] == [SERVICE_TYPE]
        assert "already active" in caplog.text

        await discovery.stop_discovery()

    async def test_stop_releases_browser_and_zeroconf(self, make_discovery, browser):
        discovery = make_discovery()
        await discovery.start_discovery()
        zeroconf = FakeAsyncZeroconf.instances[-1]

        await discovery.stop_discovery()

        assert not discovery.is_active
        browser.async_cancel.assert_awaited_once()
        zeroconf.async_close.assert_awaited_once()

    async def test_stop_when_not_started_is_noop(self, make_discovery, browser):
        discovery = make_discovery()
        await discovery.stop_discovery()
        browser.async_cancel.assert_not_awaited()

    async def test_start_failure_is_logged_not_raised(self, registry, fake_probe_factory, caplog):
        failing_factory = MagicMock(side_effect=OSError("no multicast interface"))
        discovery = EdgeServiceDiscovery(
            {}, registry, fake_probe_factory(),
            zeroconf_factory=FakeAsyncZeroconf, browser_factory=failing_factory
        )

        with caplog.at_level(logging.ERROR):
            await discovery.start_discovery()

        assert not discovery.is_active
        assert "Start discovery failed" in caplog.text

    async def test_browser_callbacks_flow_through_to_registry(self, registry, make_discovery, wait_until):
        discovery = make_discovery({"10.0.0.7": ("77%", "Charging")})
        discovery.resolve_service = AsyncMock(return_value=("10.0.0.7", 8080))
        await discovery.start_discovery()

        name = "EdgeServer_10-0-0-7._proxy-edge._tcp.local."
        discovery._on_service_state_change(
            zeroconf=None, service_type=SERVICE_TYPE, name=name, state_change=ServiceStateChange.Added
        )
        await wait_until(lambda: registry.get("10.0.0.7") is not None)

        discovery._on_service_state_change(
            zeroconf=None, service_type=SERVICE_TYPE, name=name, state_change=ServiceStateChange.Removed
        )
        await wait_until(lambda: registry.get("10.0.0.7") is None)

        await discovery.stop_discovery()

    async def test_lost_event_cancels_in_flight_probe_for_that_edge(self, registry, browser_factory, wait_until):
        release = asyncio.Event()
        probed = []

        class GatedProbe:
            async def probe(self, address, port):
                probed.append(address)
                await release.wait()
                return EdgeStatus(address, port, "80%", "Charging")

        discovery = EdgeServiceDiscovery(
            {}, registry, GatedProbe(),
            zeroconf_factory=FakeAsyncZeroconf, browser_factory=browser_factory
        )
        await discovery.start_discovery()

        discovery.publish(DiscoveryEvent(DiscoveryEventType.RESOLVED, "EdgeServer_10-0-0-8", "10.0.0.8", 8080))
        await wait_until(lambda: probed == ["10.0.0.8"])

        discovery.publish(DiscoveryEvent(DiscoveryEventType.LOST, "EdgeServer_10-0-0-8"))
        await wait_until(lambda: not discovery._probes)
        release.set()
        await asyncio.sleep(0.01)

        assert registry.get("10.0.0.8") is None
        await discovery.stop_discovery()

    async def test_lost_event_for_another_edge_leaves_probe_running(self, registry, browser_factory, wait_until):
        release = asyncio.Event()

        class GatedProbe:
            async def probe(self, address, port):
                await release.wait()
                return EdgeStatus(address, port, "80%", "Charging")

        discovery = EdgeServiceDiscovery(
            {}, registry, GatedProbe(),
            zeroconf_factory=FakeAsyncZeroconf, browser_factory=browser_factory
        )
        await discovery.start_discovery()

        discovery.publish(DiscoveryEvent(DiscoveryEventType.RESOLVED, "EdgeServer_10-0-0-8", "10.0.0.8", 8080))
        discovery.publish(DiscoveryEvent(DiscoveryEventType.LOST, "EdgeServer_10-0-0-9"))
        await asyncio.sleep(0.01)
        release.set()

        await wait_until(lambda: registry.get("10.0.0.8") is not None)
        await discovery.stop_discovery()

    async def test_publish_when_inactive_is_dropped(self, registry, make_discovery):
        discovery = make_discovery()
        registry.upsert("192.168.1.10", "80%", "Charging")

        discovery.publish(DiscoveryEvent(DiscoveryEventType.LOST, "EdgeServer_192-168-1-10"))

        assert registry.get("192.168.1.10") is not None


class TestRefreshKnownEdges:

    async def test_success_refreshes_failure_evicts(self, registry, clock, make_discovery):
        registry.upsert("10.0.0.1", "50%", "Charging")
        registry.upsert("10.0.0.2", "60%", "Charging")
        discovery = make_discovery({"10.0.0.1": ("55%", "Discharging")})
        clock.advance(30)

        result = await discovery.refresh_known_edges()

        assert registry.get("10.0.0.2") is None
        edge = registry.get("10.0.0.1")
        assert edge.battery_level == "55%"
        assert edge.last_seen == clock.now
        assert result.addresses_tested == 2
        assert result.success_count == 1
        assert sorted(discovery.probe.calls) == [("10.0.0.1", 8080), ("10.0.0.2", 8080)]

    async def test_empty_registry(self, make_discovery):
        discovery = make_discovery()
        result = await discovery.refresh_known_edges()
        assert result.addresses_tested == 0
        assert discovery.probe.calls == []
