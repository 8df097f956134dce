from datetime import datetime, timedelta
from itertools import count

import pytest

from inboxkit.records import CampaignRecord, FlowMessageRecord, SubscriberRecord

_ids = count(1)


def make_campaign(sent, **overrides):
    """CampaignRecord with healthy defaults; *sent* is a datetime or ISO string."""
    if isinstance(sent, str):
        sent = datetime.fromisoformat(sent)
    values = dict(
        id=f"c{next(_ids)}",
        sent_date=sent,
        name="Weekly newsletter",
        subject="New arrivals this week",
        emails_sent=10_000,
        revenue=1_000.0,
        orders=20,
        opens=3_000,
        clicks=200,
        unsubscribes=10,
        spam_complaints=1,
        bounces=50,
    )
    values.update(overrides)
    return CampaignRecord(**values)


def make_flow_message(sent, position, **overrides):
    if isinstance(sent, str):
        sent = datetime.fromisoformat(sent)
    values = dict(
        id=f"f{next(_ids)}",
        sent_date=sent,
        flow_id="welcome",
        flow_message_id=f"msg-{position}",
        sequence_position=position,
        flow_name="Welcome Series",
        email_name=f"Email {position}",
        emails_sent=1_000,
        revenue=500.0,
        orders=10,
        opens=500,
        clicks=60,
        unsubscribes=2,
        spam_complaints=0,
        bounces=5,
    )
    values.update(overrides)
    return FlowMessageRecord(**values)


def make_subscriber(**overrides):
    values = dict(id=f"s{next(_ids)}", email="someone@example.com", consent_raw="SUBSCRIBED")
    values.update(overrides)
    return SubscriberRecord(**values)


def weekly_campaigns(first_monday, weeks, per_week=1, **overrides):
    """*per_week* campaigns on consecutive days of each week starting at *first_monday*."""
    if isinstance(first_monday, str):
        first_monday = datetime.fromisoformat(first_monday)
    records = []
    for week in range(weeks):
        for n in range(per_week):
            sent = first_monday + timedelta(weeks=week, days=n, hours=10)
            records.append(make_campaign(sent, **overrides))
    return records


@pytest.fixture()
def campaign():
    return make_campaign


@pytest.fixture()
def flow_message():
    return make_flow_message


@pytest.fixture()
def subscriber():
    return make_subscriber
