# tests/test_protocol.py
"""
ChainMail Message Protocol Tests

Categories:
  P1. Send (local, cross-domain, fallback, failures)
  P2. fetch_page (dedup, windows, boundaries)
  P3. fetch_all
  P4. Threads
  P5. Live delivery (listen / watch)
"""

import asyncio
import logging

import pytest

from chainmail.block.contract import ContractGate, MailContract
from chainmail.block.events import EVENT_EMAIL_SENT, Folder
from chainmail.block.registry import RoutingResolver
from chainmail.block.storage import MockContentStore, ThreadStore
from chainmail.block.transport import MessageProtocol
from chainmail.errors import (
    AccountUnavailable,
    ChainReadError,
    ChainWriteError,
    ResolutionError,
)


THREAD_A = "0x" + "0a" * 32
THREAD_B = "0x" + "0b" * 32
THREAD_C = "0x" + "0c" * 32


def _protocol(ledger, naming, addresses, window=50):
    gate = ContractGate.bound_to(MailContract(ledger, addresses["local_contract"]))
    resolver = RoutingResolver(naming, ledger, local_domain="chainmail.eth")
    return MessageProtocol(ledger, gate, resolver, ThreadStore(MockContentStore()), fetch_window=window)


def _mail(ledger, addresses, block, thread, sender="bob", to="alice", thread_hash="Qm-thread"):
    return ledger.emit(addresses["local_contract"], EVENT_EMAIL_SENT, {
        "from": addresses[sender],
        "to": addresses[to],
        "mailHash": f"Qm-mail-{block}",
        "threadHash": thread_hash,
        "threadId": thread,
    }, block_number=block)


# =============================================================================
# P1. Send
# =============================================================================

def test_p1_1_local_send(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)

    receipt = asyncio.run(protocol.send(addresses["bob"], "Qm-mail", "Qm-thread", THREAD_A))

    tx = ledger.transactions[-1]
    assert (tx["contract"], tx["method"], tx["from"]) == (addresses["local_contract"], "sendEmail", addresses["alice"])
    assert tx["args"] == [addresses["bob"], "Qm-mail", "Qm-thread", THREAD_A]
    assert receipt.block_number == ledger.block_number


def test_p1_2_external_send_goes_to_foreign_contract(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)

    asyncio.run(protocol.send(
        addresses["carol"], "Qm-mail", "Qm-thread", THREAD_A, domain="other.eth", is_external=True,
    ))

    tx = ledger.transactions[-1]
    assert tx["contract"] == addresses["foreign_contract"]
    assert tx["method"] == "sendExternalEmail"
    assert tx["args"] == [addresses["local_contract"], addresses["carol"], "Qm-mail", "Qm-thread", THREAD_A]


def test_p1_3_external_resolving_to_local_equals_local_send(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)

    async def scenario():
        await protocol.send(addresses["bob"], "Qm-mail", "Qm-thread", THREAD_A)
        await protocol.send(
            addresses["bob"], "Qm-mail", "Qm-thread", THREAD_A, domain="alias.eth", is_external=True,
        )

    asyncio.run(scenario())
    local, fallback = ledger.transactions
    for tx in (local, fallback):
        tx.pop("block")
    assert fallback == local


def test_p1_4_unroutable_domain(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)

    with pytest.raises(ResolutionError):
        asyncio.run(protocol.send(
            addresses["carol"], "Qm-mail", "Qm-thread", THREAD_A, domain="nomx.eth", is_external=True,
        ))
    with pytest.raises(ResolutionError):
        asyncio.run(protocol.send(addresses["carol"], "Qm-mail", "Qm-thread", THREAD_A, is_external=True))
    assert ledger.transactions == []


def test_p1_5_no_account(ledger, naming, addresses):
    ledger.set_accounts([])
    with pytest.raises(AccountUnavailable):
        asyncio.run(_protocol(ledger, naming, addresses).send(addresses["bob"], "Qm", "Qm", THREAD_A))


def test_p1_6_write_failure(ledger, naming, addresses):
    ledger.fail_writes = True
    with pytest.raises(ChainWriteError):
        asyncio.run(_protocol(ledger, naming, addresses).send(addresses["bob"], "Qm", "Qm", THREAD_A))


def test_p1_7_explicit_sender(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)
    asyncio.run(protocol.send(addresses["alice"], "Qm", "Qm", THREAD_A, account=addresses["carol"]))
    assert ledger.transactions[-1]["from"] == addresses["carol"]


def test_p1_8_new_thread_id():
    a, b = MessageProtocol.new_thread_id(), MessageProtocol.new_thread_id()
    assert a != b
    assert a.startswith("0x") and len(a) == 66


# =============================================================================
# P2. fetch_page
# =============================================================================

def test_p2_1_same_thread_collapses_to_newest(ledger, naming, addresses):
    for block in (10, 20, 30):
        _mail(ledger, addresses, block, THREAD_A)

    page = asyncio.run(_protocol(ledger, naming, addresses).fetch_page(Folder.INBOX, until_block=100, window_size=100))

    assert len(page.events) == 1
    assert page.events[0].block_number == 30
    assert page.events[0].mail_hash == "Qm-mail-30"


def test_p2_2_windows_do_not_overlap(ledger, naming, addresses):
    _mail(ledger, addresses, 30, THREAD_A)
    _mail(ledger, addresses, 50, THREAD_B)
    _mail(ledger, addresses, 100, THREAD_C)
    protocol = _protocol(ledger, naming, addresses)

    first = asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=100, window_size=50))
    second = asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=first.next_until_block, window_size=50))

    assert [e.block_number for e in first.events] == [100]
    assert first.next_until_block == 50
    assert first.has_more
    assert [e.block_number for e in second.events] == [50, 30]
    assert second.next_until_block == 0
    assert not second.has_more


def test_p2_3_defaults_to_head_and_configured_window(ledger, naming, addresses):
    _mail(ledger, addresses, 40, THREAD_A)
    _mail(ledger, addresses, 120, THREAD_B)

    page = asyncio.run(_protocol(ledger, naming, addresses, window=50).fetch_page(Folder.INBOX))

    assert ledger.block_number == 120
    assert [e.thread_id for e in page.events] == [THREAD_B]
    assert page.next_until_block == 70


def test_p2_4_newest_first_within_block(ledger, naming, addresses):
    _mail(ledger, addresses, 10, THREAD_A)
    _mail(ledger, addresses, 10, THREAD_B)
    _mail(ledger, addresses, 10, THREAD_C)

    page = asyncio.run(_protocol(ledger, naming, addresses).fetch_page(Folder.INBOX, until_block=10))

    assert [e.thread_id for e in page.events] == [THREAD_C, THREAD_B, THREAD_A]
    assert [e.log_index for e in page.events] == [2, 1, 0]


def test_p2_5_thread_straddling_a_page_boundary(ledger, naming, addresses):
    # A thread with messages on both sides of a window boundary shows up on
    # both pages: dedup is per page, the older page carries the stale event.
    _mail(ledger, addresses, 40, THREAD_A)
    _mail(ledger, addresses, 60, THREAD_A)
    protocol = _protocol(ledger, naming, addresses)

    newer = asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=100, window_size=50))
    older = asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=newer.next_until_block, window_size=50))

    assert [(e.thread_id, e.block_number) for e in newer.events] == [(THREAD_A, 60)]
    assert [(e.thread_id, e.block_number) for e in older.events] == [(THREAD_A, 40)]


def test_p2_6_last_window_reaches_genesis(ledger, naming, addresses):
    _mail(ledger, addresses, 0, THREAD_A)
    _mail(ledger, addresses, 25, THREAD_B)

    page = asyncio.run(_protocol(ledger, naming, addresses).fetch_page(Folder.INBOX, until_block=30, window_size=50))

    assert [e.block_number for e in page.events] == [25, 0]
    assert page.next_until_block == 0


def test_p2_7_outbox_uses_sender(ledger, naming, addresses):
    _mail(ledger, addresses, 10, THREAD_A, sender="bob", to="alice")
    _mail(ledger, addresses, 11, THREAD_B, sender="alice", to="carol")
    protocol = _protocol(ledger, naming, addresses)

    outbox = asyncio.run(protocol.fetch_page(Folder.OUTBOX, until_block=20))
    inbox = asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=20))

    assert [e.thread_id for e in outbox.events] == [THREAD_B]
    assert [e.thread_id for e in inbox.events] == [THREAD_A]


def test_p2_8_invalid_window_and_read_failure(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)
    with pytest.raises(ValueError):
        asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=10, window_size=0))

    ledger.fail_reads = True
    with pytest.raises(ChainReadError):
        asyncio.run(protocol.fetch_page(Folder.INBOX, until_block=10))


# =============================================================================
# P3. fetch_all
# =============================================================================

def test_p3_1_one_event_per_correspondent(ledger, naming, addresses):
    _mail(ledger, addresses, 5, THREAD_A, sender="bob")
    _mail(ledger, addresses, 6, THREAD_B, sender="carol")
    _mail(ledger, addresses, 7, THREAD_C, sender="bob")

    events = asyncio.run(_protocol(ledger, naming, addresses).fetch_all(Folder.INBOX))

    assert [(e.from_address, e.block_number) for e in events] == [
        (addresses["bob"], 5),
        (addresses["carol"], 6),
    ]


def test_p3_2_outbox_correspondent_is_recipient(ledger, naming, addresses):
    _mail(ledger, addresses, 5, THREAD_A, sender="alice", to="bob")
    _mail(ledger, addresses, 6, THREAD_B, sender="alice", to="bob")
    _mail(ledger, addresses, 7, THREAD_C, sender="alice", to="carol")

    events = asyncio.run(_protocol(ledger, naming, addresses).fetch_all(Folder.OUTBOX))

    assert [e.to_address for e in events] == [addresses["bob"], addresses["carol"]]


# =============================================================================
# P4. Threads
# =============================================================================

def test_p4_1_thread_tail_is_last_event(ledger, naming, addresses):
    for block in (5, 8, 12):
        _mail(ledger, addresses, block, THREAD_A)
    _mail(ledger, addresses, 15, THREAD_B)
    protocol = _protocol(ledger, naming, addresses)

    assert asyncio.run(protocol.fetch_thread_tail(THREAD_A)).block_number == 12
    assert asyncio.run(protocol.fetch_thread_tail(THREAD_A, after_block=13)) is None
    assert asyncio.run(protocol.fetch_thread_tail(THREAD_C)) is None


def test_p4_2_load_thread(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)
    threads = protocol._threads

    async def scenario():
        opening = await threads.upload_data({"body": "hello"})
        reply = await threads.upload_data({"body": "hi back"})
        first_hash = await threads.new_thread(opening)
        second_hash = await threads.reply_to_thread(reply, first_hash)

        _mail(ledger, addresses, 3, THREAD_A, thread_hash=first_hash)
        _mail(ledger, addresses, 4, THREAD_A, sender="alice", to="bob", thread_hash=second_hash)

        return opening, reply, await protocol.load_thread(THREAD_A)

    opening, reply, view = asyncio.run(scenario())
    assert view.tail.block_number == 4
    assert view.mail_hashes == [opening.hash, reply.hash]
    assert len(view) == 2


def test_p4_3_load_unknown_thread(ledger, naming, addresses):
    assert asyncio.run(_protocol(ledger, naming, addresses).load_thread(THREAD_C)) is None


# =============================================================================
# P5. Live delivery
# =============================================================================

def test_p5_1_listen_delivers_both_folders(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)
    _mail(ledger, addresses, 5, THREAD_C)  # before subscription: not delivered
    ledger.mine()

    async def scenario():
        received = []
        done = asyncio.Event()

        def on_event(event, folder):
            received.append((event.thread_id, folder))
            if len(received) == 2:
                done.set()

        listener = await protocol.listen(on_event)
        ledger.mine()
        _mail(ledger, addresses, None, THREAD_A, sender="bob", to="alice")
        _mail(ledger, addresses, None, THREAD_B, sender="alice", to="carol")
        await asyncio.wait_for(done.wait(), 1)

        listener.stop()
        _mail(ledger, addresses, None, THREAD_C)
        await asyncio.sleep(0.01)
        return received, listener.active

    received, active = asyncio.run(scenario())
    assert sorted(received, key=lambda r: r[0]) == [(THREAD_A, Folder.INBOX), (THREAD_B, Folder.OUTBOX)]
    assert active is False
    assert ledger.watches() == []


def test_p5_2_async_callback(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)

    async def scenario():
        done = asyncio.Event()

        async def on_event(event, folder):
            await asyncio.sleep(0)
            done.set()

        listener = await protocol.listen(on_event)
        _mail(ledger, addresses, None, THREAD_A)
        await asyncio.wait_for(done.wait(), 1)
        listener.stop()

    asyncio.run(scenario())


def test_p5_3_failure_on_one_subscription_is_isolated(ledger, naming, addresses, caplog):
    protocol = _protocol(ledger, naming, addresses)

    async def scenario():
        received = []
        done = asyncio.Event()

        def on_event(event, folder):
            received.append(folder)
            if len(received) == 2:
                done.set()

        listener = await protocol.listen(on_event)
        inbox_watch = next(w for w in ledger.watches(EVENT_EMAIL_SENT) if "to" in w.filter)
        inbox_watch.subscription.fail(ChainReadError("poll failed"))

        _mail(ledger, addresses, None, THREAD_B, sender="alice", to="carol")
        _mail(ledger, addresses, None, THREAD_A, sender="bob", to="alice")
        await asyncio.wait_for(done.wait(), 1)
        listener.stop()
        return received

    with caplog.at_level(logging.ERROR, logger="chainmail.protocol"):
        received = asyncio.run(scenario())

    assert sorted(f.value for f in received) == ["inbox", "outbox"]
    assert "inbox subscription error" in caplog.text


def test_p5_4_handler_error_does_not_stop_delivery(ledger, naming, addresses, caplog):
    protocol = _protocol(ledger, naming, addresses)

    async def scenario():
        calls = []
        done = asyncio.Event()

        def on_event(event, folder):
            calls.append(event.thread_id)
            if len(calls) == 1:
                raise RuntimeError("handler bug")
            done.set()

        listener = await protocol.listen(on_event)
        _mail(ledger, addresses, None, THREAD_A)
        _mail(ledger, addresses, None, THREAD_B)
        await asyncio.wait_for(done.wait(), 1)
        listener.stop()
        return calls

    with caplog.at_level(logging.ERROR, logger="chainmail.protocol"):
        calls = asyncio.run(scenario())

    assert calls == [THREAD_A, THREAD_B]
    assert "handler error" in caplog.text


def test_p5_5_watch_iterates_message_events(ledger, naming, addresses):
    protocol = _protocol(ledger, naming, addresses)

    async def scenario():
        sub = await protocol.watch(Folder.INBOX)
        _mail(ledger, addresses, None, THREAD_A)
        _mail(ledger, addresses, None, THREAD_B, sender="alice", to="bob")
        _mail(ledger, addresses, None, THREAD_C)

        events = []
        async for event in sub:
            events.append(event)
            if len(events) == 2:
                sub.stop()
        return events

    events = asyncio.run(scenario())
    assert [e.thread_id for e in events] == [THREAD_A, THREAD_C]


def test_p5_6_malformed_event_is_skipped(ledger, naming, addresses, caplog):
    protocol = _protocol(ledger, naming, addresses)

    async def scenario():
        received = []
        done = asyncio.Event()

        def on_event(event, folder):
            received.append((event.thread_id, folder))
            done.set()

        listener = await protocol.listen(on_event)
        ledger.emit(addresses["local_contract"], EVENT_EMAIL_SENT, {
            "from": addresses["bob"],
            "to": addresses["alice"],
            "mailHash": "Qm-broken",
            "threadId": THREAD_B,
        })
        _mail(ledger, addresses, None, THREAD_A)
        await asyncio.wait_for(done.wait(), 1)
        active = listener.active
        listener.stop()
        return received, active

    with caplog.at_level(logging.ERROR, logger="chainmail.protocol"):
        received, active = asyncio.run(scenario())

    assert received == [(THREAD_A, Folder.INBOX)]
    assert active is True
    assert "inbox subscription error" in caplog.text
