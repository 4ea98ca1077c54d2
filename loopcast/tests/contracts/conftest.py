"""
Shared pytest fixtures for loopcast contract tests.

Contract tests use test doubles instead of ffmpeg/ffprobe; only the sanitizer
tests touch real (tmp_path) files.
"""

import threading

import pytest

from loopcast.config import LoopcastConfig
from loopcast.encoder.supervisor import StreamSupervisor
from loopcast.models import StreamRequest
from loopcast.tests.contracts.test_doubles import (
    DESTINATION,
    FakeCapabilityProber,
    FakeDurationProber,
    FakePopen,
    FakePreparer,
    FakeScheduler,
)


@pytest.fixture
def config():
    """Default configuration (no env file, no environment lookups)."""
    return LoopcastConfig()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def popen():
    return FakePopen()


@pytest.fixture
def preparer():
    return FakePreparer()


@pytest.fixture
def duration_prober():
    return FakeDurationProber()


@pytest.fixture
def capability_prober():
    return FakeCapabilityProber()


@pytest.fixture
def fatal_errors():
    """Collects errors passed to on_fatal."""
    return []


@pytest.fixture
def make_supervisor(config, scheduler, popen, preparer, duration_prober, capability_prober, fatal_errors):
    """Factory for supervisors wired to the fakes; all are stopped at teardown."""
    created = []

    def factory(**overrides):
        kwargs = dict(
            config=config,
            preparer=preparer,
            duration_prober=duration_prober,
            capability_prober=capability_prober,
            scheduler=scheduler,
            popen=popen,
            on_fatal=fatal_errors.append,
        )
        kwargs.update(overrides)
        supervisor = StreamSupervisor(**kwargs)
        created.append(supervisor)
        return supervisor

    yield factory

    for supervisor in created:
        supervisor.close(timeout=1.0)
    for process in popen.processes:
        process.finish(0)


@pytest.fixture
def supervisor(make_supervisor):
    return make_supervisor()


@pytest.fixture
def request_two_by_two():
    """Two tracks, two backgrounds."""
    return StreamRequest.build(
        tracks=["/media/one.mp3", "/media/two.mp3"],
        backgrounds=[("/media/bg1.png", 20.0), ("/media/bg2.png", 20.0)],
        destination=DESTINATION,
    )


@pytest.fixture
def request_single():
    """One track, one background."""
    return StreamRequest.build(
        tracks=["/media/one.mp3"],
        backgrounds=[("/media/bg1.png", 30.0)],
        destination=DESTINATION,
    )


@pytest.fixture(autouse=False)
def thread_leak_guard():
    """
    Optional fixture to detect thread leaks between tests.

    Request it explicitly in tests that must leave no threads behind.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = [t for t in threading.enumerate() if t.ident in after - before and t.is_alive()]
    if leaked:
        thread_info = "\n".join(f"  - {t.name} (daemon={t.daemon})" for t in leaked)
        assert False, f"Thread leak detected.\nLeaked threads:\n{thread_info}"
