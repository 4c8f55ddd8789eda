import time

import pytest

from sploit_core.config.definitions import DefinitionSource
from sploit_core.config.reload import DebounceState, ReloadCoordinator
from sploit_core.notify.notifier import ERROR_SUBJECT
from sploit_core.scheduler.registry import ScheduleRegistry

SERVICES = """
- name: http
  modules:
    - name: http_version
      cronspec: "@hourly"
      commands:
        - use auxiliary/scanner/http/http_version
        - set RHOSTS SPLOITHOSTNAME
        - run
"""


@pytest.fixture
def layout(tmp_path):
    hosts = tmp_path / "host.d"
    hosts.mkdir()
    (hosts / "web1.yml").write_text("name: web1\nservices:\n  - name: http\n    ports: [80]\n")
    services = tmp_path / "services.yml"
    services.write_text(SERVICES)
    return hosts, services


@pytest.fixture
def coordinator(layout, backend, state, driver, reporter):
    hosts, services = layout
    source = DefinitionSource(str(hosts), str(services))
    registry = ScheduleRegistry(backend, state, driver, reporter)
    return ReloadCoordinator(source, registry, state, reporter, debounce=0.2)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestDebounceState:
    def test_idle_has_no_timeout(self):
        d = DebounceState(window=3.0)
        assert d.timeout(10.0) is None
        assert d.due(10.0) is None

    def test_each_event_rearms_the_timer(self):
        d = DebounceState(window=3.0)
        d.on_event("a.yml", 0.0)
        d.on_event("b.yml", 2.0)
        assert d.due(3.5) is None
        assert d.timeout(3.5) == pytest.approx(1.5)
        assert d.due(5.0) == "b.yml"
        # disarmed after firing
        assert d.due(9.0) is None
        assert d.timeout(9.0) is None

    def test_burst_fires_once(self):
        d = DebounceState(window=1.0)
        fired = []
        now = 0.0
        for i in range(10):
            d.on_event(f"{i}.yml", now)
            now += 0.1
            p = d.due(now)
            if p:
                fired.append(p)
        now += 1.0
        fired.append(d.due(now))
        assert fired == ["9.yml"]


class TestRebuild:
    def test_rebuild_installs_definitions_and_triggers(self, coordinator, state, backend):
        assert coordinator.rebuild("test")
        assert [t.name for t in state.targets] == ["web1"]
        assert len(backend.jobs) == 1
        assert coordinator.rebuilds == 1

    def test_broken_definition_keeps_previous_schedule(self, coordinator, layout, state, backend, notifier):
        hosts, _ = layout
        coordinator.rebuild("initial")
        jobs = dict(backend.jobs)
        (hosts / "broken.yml").write_text("name: [unclosed\n")
        assert not coordinator.rebuild("broken")
        assert backend.jobs == jobs
        assert [t.name for t in state.targets] == ["web1"]
        assert notifier.sent[-1][0] == ERROR_SUBJECT

    def test_bad_trigger_spec_keeps_previous_schedule(self, coordinator, layout, backend):
        _, services = layout
        coordinator.rebuild("initial")
        jobs = dict(backend.jobs)
        services.write_text(SERVICES.replace("@hourly", "not a spec"))
        assert not coordinator.rebuild("bad spec")
        assert backend.jobs == jobs

    def test_non_utf8_definition_keeps_previous_schedule(self, coordinator, layout, state, backend, notifier):
        hosts, _ = layout
        coordinator.rebuild("initial")
        jobs = dict(backend.jobs)
        (hosts / "garbled.yml").write_bytes(b"name: \xff\xfe\n")
        assert not coordinator.rebuild("garbled")
        assert backend.jobs == jobs
        assert [t.name for t in state.targets] == ["web1"]
        assert notifier.sent[-1][0] == ERROR_SUBJECT
        assert "UTF-8" in notifier.sent[-1][1]

    def test_firing_during_publish_scans_new_targets(self, coordinator, layout, state, backend, transport):
        hosts, _ = layout
        coordinator.rebuild("initial")
        (hosts / "web2.yml").write_text("name: web2\nservices:\n  - name: http\n    ports: [8080]\n")
        publish = state.replace_definitions

        def fire_then_publish(definitions):
            backend.fire("http/http_version")
            publish(definitions)

        state.replace_definitions = fire_then_publish
        assert coordinator.rebuild("web2 added")
        assert "set RHOSTS web2\n" in transport.writes

    def test_non_definition_files_are_ignored(self, coordinator):
        assert not coordinator.handle("/etc/sploit/host.d/.web1.yml.swp")
        assert coordinator.debounce.deadline is None
        assert coordinator.handle("/etc/sploit/host.d/web1.yml")
        assert coordinator.debounce.deadline is not None


class TestCoordinatorThread:
    def test_burst_of_events_causes_one_rebuild(self, coordinator, layout):
        hosts, _ = layout
        coordinator.start()
        try:
            for _ in range(5):
                coordinator.submit(str(hosts / "web1.yml"))
                time.sleep(0.02)
            assert _wait_for(lambda: coordinator.rebuilds == 1)
            time.sleep(0.4)
            assert coordinator.rebuilds == 1
        finally:
            coordinator.stop()

    def test_separate_bursts_rebuild_separately(self, coordinator, layout):
        hosts, _ = layout
        coordinator.start()
        try:
            coordinator.submit(str(hosts / "web1.yml"))
            assert _wait_for(lambda: coordinator.rebuilds == 1)
            (hosts / "web2.yml").write_text("name: web2\n")
            coordinator.submit(str(hosts / "web2.yml"))
            assert _wait_for(lambda: coordinator.rebuilds == 2)
            assert sorted(t.name for t in coordinator.state.targets) == ["web1", "web2"]
        finally:
            coordinator.stop()

    def test_ignored_events_never_rebuild(self, coordinator, layout):
        hosts, _ = layout
        coordinator.start()
        try:
            coordinator.submit(str(hosts / "notes.txt"))
            time.sleep(0.5)
            assert coordinator.rebuilds == 0
        finally:
            coordinator.stop()

    def test_undecodable_file_does_not_stop_reloads(self, coordinator, layout, reporter):
        hosts, _ = layout
        coordinator.start()
        try:
            garbled = hosts / "garbled.yml"
            garbled.write_bytes(b"name: \xff\xfe\n")
            coordinator.submit(str(garbled))
            assert _wait_for(lambda: reporter.reported == 1)
            garbled.unlink()
            (hosts / "web2.yml").write_text("name: web2\n")
            coordinator.submit(str(hosts / "web2.yml"))
            assert _wait_for(lambda: coordinator.rebuilds == 1)
            assert coordinator._thread.is_alive()
            assert sorted(t.name for t in coordinator.state.targets) == ["web1", "web2"]
        finally:
            coordinator.stop()

    def test_unexpected_rebuild_error_is_reported_and_thread_survives(self, coordinator, layout, reporter,
                                                                      monkeypatch):
        hosts, _ = layout
        load = coordinator.source.load
        calls = []

        def flaky_load():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("disk vanished")
            return load()

        monkeypatch.setattr(coordinator.source, "load", flaky_load)
        coordinator.start()
        try:
            coordinator.submit(str(hosts / "web1.yml"))
            assert _wait_for(lambda: reporter.reported == 1)
            assert coordinator.rebuilds == 0
            coordinator.submit(str(hosts / "web1.yml"))
            assert _wait_for(lambda: coordinator.rebuilds == 1)
            assert coordinator._thread.is_alive()
        finally:
            coordinator.stop()
