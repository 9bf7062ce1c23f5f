"""
Tests for the in-process event bus
"""

import asyncio

from docextract.events import Event, EventBus, EventType


class TestEventBus:
    """Publish and subscribe"""

    def setup_method(self):
        self.bus = EventBus()

    def test_subscribe_and_emit(self):
        received = []
        self.bus.subscribe(EventType.PATTERN_LEARNED, received.append)

        event = self.bus.emit(EventType.PATTERN_LEARNED, data={'pattern_id': 'p1'})

        assert received == [event]
        assert received[0].data['pattern_id'] == 'p1'

    def test_other_types_not_delivered(self):
        received = []
        self.bus.subscribe(EventType.RULE_APPLIED, received.append)

        self.bus.emit(EventType.PROGRESS, progress=0.5)

        assert received == []

    def test_wildcard_subscription(self):
        received = []
        self.bus.subscribe(None, received.append)

        self.bus.emit(EventType.PROGRESS, progress=0.3, phase='Classify')
        self.bus.emit(EventType.RULE_APPLIED)

        assert [e.event_type for e in received] == [EventType.PROGRESS, EventType.RULE_APPLIED]

    def test_unsubscribe(self):
        received = []
        unsubscribe = self.bus.subscribe(EventType.PROGRESS, received.append)

        unsubscribe()
        unsubscribe()
        self.bus.emit(EventType.PROGRESS)

        assert received == []

    def test_failing_handler_does_not_interrupt(self):
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        self.bus.subscribe(EventType.PROGRESS, broken)
        self.bus.subscribe(EventType.PROGRESS, received.append)

        self.bus.emit(EventType.PROGRESS)

        assert len(received) == 1

    def test_async_handler_runs_on_loop(self):
        received = []

        async def handler(event):
            received.append(event.event_type)

        self.bus.subscribe(EventType.PROCESSING_COMPLETED, handler)

        async def publish():
            self.bus.emit(EventType.PROCESSING_COMPLETED, document_id='d1')
            await asyncio.sleep(0)

        asyncio.run(publish())

        assert received == [EventType.PROCESSING_COMPLETED]

    def test_async_handler_without_loop_is_skipped(self):
        received = []

        async def handler(event):
            received.append(event)

        self.bus.subscribe(EventType.PROGRESS, handler)
        self.bus.emit(EventType.PROGRESS)

        assert received == []

    def test_to_dict(self):
        event = Event(event_type=EventType.PROGRESS, progress=0.7, phase='Extract', document_id='d1')

        data = event.to_dict()

        assert data['event_type'] == 'progress'
        assert data['progress'] == 0.7
        assert data['phase'] == 'Extract'
