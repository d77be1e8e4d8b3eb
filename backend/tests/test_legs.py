"""
OutboundLeg tests: ordering, bounded queueing and failure handling.

Run with: pytest tests/test_legs.py -v
"""

import asyncio

import pytest

from legs import OutboundLeg


class Recorder:
    def __init__(self, fail_after: int | None = None):
        self.sent = []
        self.fail_after = fail_after

    async def __call__(self, payload):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise ConnectionError("peer went away")
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_writes_in_order():
    out = Recorder()
    leg = OutboundLeg("TEST", out)
    leg.start()

    for i in range(5):
        await leg.send({"n": i}, droppable=i % 2 == 0)
    await leg.join()

    assert [p["n"] for p in out.sent] == [0, 1, 2, 3, 4]
    await leg.aclose()


@pytest.mark.asyncio
async def test_full_queue_drops_new_audio():
    out = Recorder()
    leg = OutboundLeg("TEST", out, maxsize=2)

    await leg.send({"n": 0}, droppable=True)
    await leg.send({"n": 1}, droppable=True)
    await leg.send({"n": 2}, droppable=True)

    assert leg.dropped == 1
    leg.start()
    await leg.join()
    assert [p["n"] for p in out.sent] == [0, 1]
    await leg.aclose()


@pytest.mark.asyncio
async def test_control_message_evicts_oldest_audio():
    out = Recorder()
    leg = OutboundLeg("TEST", out, maxsize=2)

    await leg.send({"n": 0}, droppable=True)
    await leg.send({"n": 1}, droppable=True)
    await leg.send({"n": "ctl"})

    leg.start()
    await leg.join()
    assert [p["n"] for p in out.sent] == [1, "ctl"]
    assert leg.dropped == 1
    await leg.aclose()


@pytest.mark.asyncio
async def test_discard_droppable_keeps_control_messages():
    out = Recorder()
    leg = OutboundLeg("TEST", out)

    await leg.send({"n": 0}, droppable=True)
    await leg.send({"n": "ctl"})
    await leg.send({"n": 1}, droppable=True)

    assert leg.discard_droppable() == 2
    leg.start()
    await leg.join()
    assert out.sent == [{"n": "ctl"}]
    await leg.aclose()


@pytest.mark.asyncio
async def test_write_failure_closes_leg():
    out = Recorder(fail_after=1)
    leg = OutboundLeg("TEST", out)
    leg.start()

    await leg.send({"n": 0})
    await leg.send({"n": 1})
    await leg.join()

    assert not leg.open
    await leg.send({"n": 2})
    assert out.sent == [{"n": 0}]
    await leg.aclose()


@pytest.mark.asyncio
async def test_aclose_flushes_pending():
    out = Recorder()
    leg = OutboundLeg("TEST", out)
    leg.start()

    await leg.send({"n": 0})
    await leg.send({"n": 1})
    await leg.aclose()

    assert out.sent == [{"n": 0}, {"n": 1}]
    assert not leg.open


@pytest.mark.asyncio
async def test_aclose_gives_up_on_stalled_peer():
    async def stall(payload):
        await asyncio.sleep(10)

    leg = OutboundLeg("TEST", stall)
    leg.start()
    await leg.send({"n": 0})

    await leg.aclose(timeout=0.05)
    assert not leg.open
