"""
Tests: NotificationService — recipients, visibility, read tracking.
"""

import pytest

from rfp_platform.models import db
from rfp_platform.services.notification import NotificationService


@pytest.fixture()
def notes(buyer, make_rfp):
    rfp = make_rfp()
    broadcast = NotificationService.create(company_id=buyer.company_id, title="SLA breached",
                                           category="sla", severity="warning", rfp_id=rfp.id)
    direct = NotificationService.create(company_id=buyer.company_id, title="For you", user_id=buyer.id)
    db.session.commit()
    return rfp, broadcast, direct


class TestNotificationService:
    def test_unknown_category_and_severity_fall_back(self, buyer):
        n = NotificationService.create(company_id=buyer.company_id, title="x" * 400,
                                       category="weird", severity="loud")
        assert n.category == "system"
        assert n.severity == "info"
        assert len(n.title) == 300

    def test_buyer_sees_broadcast_and_direct(self, notes, buyer):
        items, total = NotificationService.list_for_user(buyer)
        assert total == 2
        assert {n.title for n in items} == {"SLA breached", "For you"}

    def test_rfp_filter(self, notes, buyer):
        rfp, broadcast, _ = notes
        items, total = NotificationService.list_for_user(buyer, rfp_id=rfp.id)
        assert total == 1
        assert items == [broadcast]

    def test_other_company_sees_nothing(self, notes, other_buyer):
        assert NotificationService.list_for_user(other_buyer)[1] == 0
        assert NotificationService.unread_count(other_buyer) == 0

    def test_mark_read(self, notes, buyer):
        _, broadcast, _ = notes
        assert NotificationService.unread_count(buyer) == 2
        marked = NotificationService.mark_read(buyer, broadcast.id)
        assert marked.is_read is True
        assert marked.read_at is not None
        assert NotificationService.unread_count(buyer) == 1
        items, _ = NotificationService.list_for_user(buyer, unread_only=True)
        assert [n.title for n in items] == ["For you"]

    def test_mark_read_not_visible(self, notes, other_buyer):
        _, broadcast, _ = notes
        assert NotificationService.mark_read(other_buyer, broadcast.id) is None

    def test_mark_all_read(self, notes, buyer):
        assert NotificationService.mark_all_read(buyer) == 2
        assert NotificationService.unread_count(buyer) == 0
        assert NotificationService.mark_all_read(buyer) == 0
