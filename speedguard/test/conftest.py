import os
import tempfile
import threading

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="speedguard-logs-"))

import pytest

from speedguard.models import (
    AppLifecycleState, DeliveryResult, PermissionStatus, SubscriptionHandle,
)
from speedguard.monitor import SpeedMonitor
from speedguard.providers import DistanceFilter


class FakeProvider:
    """Provider fed directly by `push()`."""

    def __init__(self, permission=PermissionStatus.GRANTED):
        self.permission = permission
        self.subscriptions = {}
        self.permission_requests = 0
        self._filters = {}

    async def request_permission(self):
        self.permission_requests += 1
        return self.permission

    async def subscribe(self, callback, policy):
        handle = SubscriptionHandle()
        self.subscriptions[handle.id] = callback
        self._filters[handle.id] = DistanceFilter(policy.distance_filter_m)
        return handle

    async def unsubscribe(self, handle):
        self.subscriptions.pop(handle.id, None)
        self._filters.pop(handle.id, None)

    async def push(self, sample):
        delivered = 0
        for sub_id, callback in list(self.subscriptions.items()):
            if self._filters[sub_id].accept(sample):
                await callback(sample)
                delivered += 1
        return delivered


class FakeLifecycle:
    def __init__(self, state=AppLifecycleState.FOREGROUND):
        self.state = state
        self.reader_threads = []

    def current_state(self):
        self.reader_threads.append(threading.get_ident())
        return self.state

    def set_state(self, state):
        self.state = AppLifecycleState.parse(state)
        return self.state


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.delivered = []

    async def deliver(self, title, body):
        if self.fail:
            raise ConnectionError("sink down")
        self.delivered.append((title, body))
        return DeliveryResult(delivered=True)


class RecordingChannel:
    def __init__(self):
        self.received = []

    async def emit(self, event_name, payload):
        self.received.append((event_name, dict(payload)))
        return DeliveryResult(delivered=True)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def lifecycle():
    return FakeLifecycle()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def events():
    return RecordingChannel()


@pytest.fixture
def monitor(provider, lifecycle, notifier, events):
    return SpeedMonitor(provider, lifecycle, notifier, events)
