"""Tests for waterfall.services.notifications — offer webhook and Slack alerts."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from waterfall.engine.log import OFFER_SENT, RUN_SUCCEEDED
from waterfall.engine.models import ACCEPTED, DECLINED
from waterfall.engine.runner import WaterfallRunner
from waterfall.engine.tiers import resolve
from waterfall.services import notifications

T0 = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

OFFER_URL = 'https://gateway.example.com/offers'
SLACK_URL = 'https://hooks.slack.com/services/T000/B000/XXX'

real_get_queue = notifications._get_queue


@pytest.fixture(autouse=True)
def inline_queue():
    """RQ queue stand-in that runs each job as soon as it is enqueued."""
    queue = MagicMock()
    queue.enqueue.side_effect = lambda func, *args, **kwargs: func(*args)
    with patch.object(notifications, '_get_queue', return_value=queue):
        yield queue


@pytest.fixture
def webhooks():
    with patch.object(notifications, 'OFFER_WEBHOOK_URL', OFFER_URL), \
         patch.object(notifications, 'SLACK_WEBHOOK_URL', SLACK_URL):
        yield


@pytest.fixture
def runner(clock):
    runner = WaterfallRunner('lane-1', 'LD001', clock=clock)
    runner.subscribe(notifications.handle_event)
    return runner


def _posts_to(mock_post, url):
    return [c for c in mock_post.call_args_list if c.args and c.args[0] == url]


class TestOfferDelivery:

    def test_each_offer_posted(self, webhooks, mock_post, runner, make_entry):
        runner.start(resolve([make_entry('A', rate=2500, window=20, name='Swift'),
                              make_entry('B', rate=2500, window=20)], [], auto_tier_enabled=True), now=T0)
        offers = _posts_to(mock_post, OFFER_URL)
        assert len(offers) == 2
        payload = offers[0].kwargs['json']
        assert payload['event'] == 'offer_sent'
        assert payload['carrier_id'] == 'A'
        assert payload['carrier_name'] == 'Swift'
        assert payload['contact_email'] == 'a@example.com'
        assert payload['rate_cents'] == 250000
        assert payload['response_window'] == 20
        assert payload['load_id'] == 'LD001'

    def test_escalation_sends_next_offers(self, webhooks, mock_post, runner, make_entry):
        runner.start(resolve([make_entry('A'), make_entry('B')]), now=T0)
        runner.record_response('A', DECLINED, now=T0 + timedelta(minutes=1))
        offers = _posts_to(mock_post, OFFER_URL)
        assert [c.kwargs['json']['carrier_id'] for c in offers] == ['A', 'B']
        assert offers[1].kwargs['json']['stage_index'] == 1

    def test_no_webhook_configured_sends_nothing(self, mock_post, runner, make_entry):
        with patch.object(notifications, 'OFFER_WEBHOOK_URL', None), \
             patch.object(notifications, 'SLACK_WEBHOOK_URL', None):
            runner.start(resolve([make_entry('A')]), now=T0)
            runner.record_response('A', ACCEPTED, now=T0)
        mock_post.assert_not_called()

    def test_gateway_failure_does_not_block_run(self, webhooks, mock_post, runner, make_entry, caplog):
        mock_post.side_effect = requests.ConnectionError('gateway down')
        runner.start(resolve([make_entry('A')]), now=T0)
        assert runner.status == 'running'
        assert 'Failed to deliver offer to carrier A' in caplog.text

    def test_gateway_error_status_logged(self, webhooks, mock_post, runner, make_entry, caplog):
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError('502')
        runner.start(resolve([make_entry('A')]), now=T0)
        assert 'Failed to deliver offer' in caplog.text


class TestRunFinished:

    def test_success_posts_slack_blocks(self, webhooks, mock_post, runner, make_entry):
        runner.start(resolve([make_entry('A', rate=2750.5, name='Heartland')]), now=T0)
        runner.record_response('A', ACCEPTED, now=T0 + timedelta(minutes=3))
        slack = _posts_to(mock_post, SLACK_URL)
        assert len(slack) == 1
        blocks = slack[0].kwargs['json']['blocks']
        assert blocks[0]['text']['text'] == 'Load LD001 assigned'
        field_text = [f['text'] for f in blocks[1]['fields']]
        assert '*Carrier:* Heartland' in field_text
        assert '*Rate:* $2,750.50' in field_text

    def test_exhausted_posts_slack(self, webhooks, mock_post, runner, make_entry):
        runner.start(resolve([make_entry('A', window=5)]), now=T0)
        runner.tick(now=T0 + timedelta(minutes=5))
        slack = _posts_to(mock_post, SLACK_URL)
        assert len(slack) == 1
        assert 'exhausted' in slack[0].kwargs['json']['blocks'][0]['text']['text']

    def test_other_events_ignored(self, webhooks, mock_post, runner, make_entry):
        runner.start(resolve([make_entry('A')]), now=T0)
        mock_post.reset_mock()
        runner.pause(now=T0)
        runner.resume(now=T0)
        mock_post.assert_not_called()

    def test_handle_event_routes_by_kind(self, webhooks, mock_post, runner, make_entry):
        runner.start(resolve([make_entry('A')]), now=T0)
        offer = next(e for e in runner.log.all() if e.kind == OFFER_SENT)
        with patch.object(notifications, 'send_offer') as send_offer, \
             patch.object(notifications, 'notify_run_finished') as notify:
            notifications.handle_event(offer, runner.state)
            send_offer.assert_called_once_with(notifications.offer_payload(offer, runner.state))
            notify.assert_not_called()

    def test_slack_failure_logged(self, webhooks, mock_post, runner, make_entry, caplog):
        runner.start(resolve([make_entry('A')]), now=T0)
        mock_post.side_effect = requests.ConnectionError('slack down')
        runner.record_response('A', ACCEPTED, now=T0)
        assert runner.log.last.kind == RUN_SUCCEEDED
        assert 'Failed to send outcome notification' in caplog.text


# ── RQ queueing ──────────────────────────────────────────────────────────────

class TestQueueing:
    """handle_event only enqueues; the HTTP call happens in the worker job."""

    def test_offer_enqueued_not_posted(self, webhooks, mock_post, inline_queue, runner, make_entry):
        inline_queue.enqueue.side_effect = None
        runner.start(resolve([make_entry('A', name='Swift')]), now=T0)
        mock_post.assert_not_called()
        func, payload = inline_queue.enqueue.call_args.args
        assert func is notifications.send_offer
        assert payload['carrier_id'] == 'A'
        assert payload['stage_name'] == 'Swift'
        assert inline_queue.enqueue.call_args.kwargs == {'job_timeout': 60}

    def test_finished_run_enqueues_slack_job(self, webhooks, inline_queue, runner, make_entry):
        runner.start(resolve([make_entry('A')]), now=T0)
        inline_queue.enqueue.side_effect = None
        inline_queue.enqueue.reset_mock()
        runner.record_response('A', ACCEPTED, now=T0)
        func, run_id, blocks = inline_queue.enqueue.call_args.args
        assert func is notifications.notify_run_finished
        assert run_id == runner.state.run_id
        assert blocks[0]['text']['text'] == 'Load LD001 assigned'

    def test_queue_unavailable_logged(self, webhooks, mock_post, inline_queue, runner, make_entry, caplog):
        inline_queue.enqueue.side_effect = ConnectionError('redis down')
        runner.start(resolve([make_entry('A')]), now=T0)
        assert runner.status == 'running'
        assert 'Failed to queue offer_sent notification for lane-1/LD001' in caplog.text
        mock_post.assert_not_called()

    def test_get_queue_created_once(self):
        notifications._queue = None
        try:
            with patch('rq.Queue') as queue_cls:
                first = real_get_queue()
                second = real_get_queue()
            assert first is second
            queue_cls.assert_called_once()
            assert queue_cls.call_args.args == ('notifications',)
        finally:
            notifications._queue = None
