from datetime import datetime, timedelta, timezone

from app.database import utcnow
from app.models.borrowing_transaction import BorrowingStatus
from app.models.equipment import EquipmentCondition
from app.models.notification import NotificationType
from app.models.reservation import ReservationStatus
from app.schemas.borrowing import (
    BorrowCreateRequest, BorrowApproveRequest, BorrowRejectRequest, BorrowReturnRequest, ExtensionRequest,
)
from app.schemas.waitlist import WaitlistCreateRequest
from app.services.availability_service import availability_service
from app.services.borrowing_service import borrowing_service
from app.services.waitlist_service import waitlist_service
from app.utils.exceptions import (
    AccountBannedException, BorrowLimitExceededException, ExtensionNotAllowedException,
    ForbiddenException, InvalidDateRangeException, InvalidStatusTransitionException,
    ReservationConflictException, EquipmentUnavailableException,
)
from tests.support import LabTestCase, at


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class BorrowingTestCase(LabTestCase):

    def request(self, user, expected, borrow_date=None, equipment=None, now=None):
        body = BorrowCreateRequest(equipmentId=(equipment or self.equipment).id,
                                   borrowDate=borrow_date, expectedReturnDate=expected, purpose="Practicum")
        return borrowing_service.request_borrow(self.db, body, user, now=now)


class RequestTest(BorrowingTestCase):

    def test_request_is_pending_and_notifies_staff(self):
        data = self.request(self.student, utcnow() + timedelta(days=2))

        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["penaltyAmount"], 0)
        for u in (self.staff, self.admin):
            notes = self.notifications_for(u)
            self.assertEqual(len(notes), 1)
            self.assertEqual(notes[0].type, NotificationType.APPROVAL)
            self.assertEqual(notes[0].data["borrowingId"], data["id"])

    def test_open_item_limit_per_role(self):
        items = [self.make_equipment(f"Multimeter {i}", f"MM-00{i}") for i in range(4)]
        for e in items[:3]:
            self.request(self.student, utcnow() + timedelta(days=2), equipment=e)
        with self.assertRaises(BorrowLimitExceededException):
            self.request(self.student, utcnow() + timedelta(days=2), equipment=items[3])

        # A closed request frees a place
        own = borrowing_service.list_borrowings(self.db, self.student, 1, 20, None, None, None)[0]
        borrowing_service.cancel_borrow(self.db, own[0]["id"], self.student)
        self.request(self.student, utcnow() + timedelta(days=2), equipment=items[3])

    def test_period_limit_per_role(self):
        now = utcnow()
        with self.assertRaises(BorrowLimitExceededException):
            self.request(self.student, now + timedelta(days=15), now=now)
        self.request(self.lecturer, now + timedelta(days=15), now=now)

    def test_banned_user(self):
        self.student.bannedUntil = utcnow() + timedelta(days=3)
        self.db.commit()
        with self.assertRaises(AccountBannedException):
            self.request(self.student, utcnow() + timedelta(days=2))

    def test_expired_ban_is_ignored(self):
        self.student.bannedUntil = utcnow() - timedelta(days=1)
        self.db.commit()
        self.assertEqual(self.request(self.student, utcnow() + timedelta(days=2))["status"], "pending")

    def test_return_date_must_follow_borrow_date(self):
        with self.assertRaises(InvalidDateRangeException):
            self.request(self.student, at(9), borrow_date=at(10))

    def test_lost_equipment(self):
        self.equipment.lostAt = utcnow()
        self.db.commit()
        with self.assertRaises(EquipmentUnavailableException):
            self.request(self.student, utcnow() + timedelta(days=2))

    def test_conflicts_with_other_users_reservations_only(self):
        self.make_reservation(self.lecturer, at(10), at(11))
        with self.assertRaises(ReservationConflictException) as ctx:
            self.request(self.student, at(12), borrow_date=at(9))
        self.assertEqual(ctx.exception.detail["error"]["details"][0]["type"], "reservation")

        self.make_reservation(self.student, at(13), at(14))
        self.assertEqual(self.request(self.student, at(15), borrow_date=at(13))["status"], "pending")


class DecisionTest(BorrowingTestCase):

    def test_approval_occupies_the_timeline(self):
        data = self.request(self.student, at(12), borrow_date=at(9))
        self.assertTrue(availability_service.is_available(self.db, self.equipment.id, at(10), at(11)))

        approved = borrowing_service.approve_borrow(self.db, data["id"], BorrowApproveRequest(), self.staff)
        self.assertEqual(approved["status"], "active")
        self.assertIsNotNone(approved["approvedAt"])
        self.assertFalse(availability_service.is_available(self.db, self.equipment.id, at(10), at(11)))
        self.assertEqual(self.notifications_for(self.student)[-1].type, NotificationType.APPROVAL)

    def test_approval_rechecks_conflicts(self):
        data = self.request(self.student, at(12), borrow_date=at(9))
        self.make_reservation(self.lecturer, at(10), at(11), status=ReservationStatus.PENDING)
        with self.assertRaises(ReservationConflictException):
            borrowing_service.approve_borrow(self.db, data["id"], BorrowApproveRequest(), self.staff)

    def test_reject_records_note(self):
        data = self.request(self.student, at(12), borrow_date=at(9))
        rejected = borrowing_service.reject_borrow(self.db, data["id"],
                                                   BorrowRejectRequest(note="  Under calibration  "), self.staff)
        self.assertEqual(rejected["status"], "rejected")
        self.assertEqual(rejected["adminNotes"], "Under calibration")
        with self.assertRaises(InvalidStatusTransitionException):
            borrowing_service.approve_borrow(self.db, data["id"], BorrowApproveRequest(), self.staff)

    def test_cancel_only_own_pending(self):
        data = self.request(self.student, at(12), borrow_date=at(9))
        with self.assertRaises(ForbiddenException):
            borrowing_service.cancel_borrow(self.db, data["id"], self.lecturer)
        self.assertEqual(borrowing_service.cancel_borrow(self.db, data["id"], self.student)["status"], "cancelled")

        active = self.make_borrowing(self.student, at(13), at(15), equipment=self.make_equipment("Scope", "S-2"))
        with self.assertRaises(InvalidStatusTransitionException):
            borrowing_service.cancel_borrow(self.db, active.id, self.student)


class ReturnTest(BorrowingTestCase):

    def test_late_return_settles_penalty(self):
        t = self.make_borrowing(self.student, utc(2024, 12, 28), utc(2025, 1, 1))
        data = borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(condition="good"),
                                               self.staff, now=utc(2025, 1, 4))

        self.assertEqual(data["status"], "returned")
        self.assertEqual(data["penaltyAmount"], 15000)
        self.assertEqual(data["penaltyFormatted"], "Rp 15.000")
        self.assertEqual(data["overdueDays"], 3)
        self.assertFalse(data["penaltyPaid"])
        self.assertEqual(self.notifications_for(self.student)[-1].data["penalty"], 15000)

    def test_return_is_final(self):
        t = self.make_borrowing(self.student, utc(2024, 12, 28), utc(2025, 1, 1))
        borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff, now=utc(2025, 1, 4))
        with self.assertRaises(InvalidStatusTransitionException):
            borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff, now=utc(2025, 2, 1))
        t = self.reload(t)
        self.assertEqual(t.actualReturnDate, utc(2025, 1, 4))
        self.assertEqual(t.penaltyAmount, 15000)

    def test_pending_cannot_be_returned(self):
        t = self.make_borrowing(self.student, at(9), at(12), status=BorrowingStatus.PENDING)
        with self.assertRaises(InvalidStatusTransitionException):
            borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff)

    def test_on_time_return_has_no_penalty(self):
        now = utcnow()
        t = self.make_borrowing(self.student, now - timedelta(days=1), now + timedelta(days=1))
        data = borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff)
        self.assertEqual(data["penaltyAmount"], 0)
        self.assertTrue(data["penaltyPaid"])

    def test_damage_updates_equipment_condition(self):
        now = utcnow()
        t = self.make_borrowing(self.student, now - timedelta(days=1), now + timedelta(days=1))
        borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(condition="poor", hasDamage=True),
                                        self.staff)
        self.assertEqual(self.reload(self.equipment).condition, EquipmentCondition.POOR)

    def test_early_return_promotes_waitlist(self):
        now = utcnow()
        t = self.make_borrowing(self.student, now - timedelta(days=1), now + timedelta(days=2))
        start = now + timedelta(days=1)
        entry, _ = waitlist_service.enqueue(
            self.db,
            WaitlistCreateRequest(equipmentId=self.equipment.id, requestedStartTime=start,
                                  requestedEndTime=start + timedelta(hours=2)),
            self.lecturer,
        )

        borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff)

        self.assertIsNotNone(self.waitlist_entry(entry["id"]).notifiedAt)
        self.assertEqual(self.notifications_for(self.lecturer)[-1].type, NotificationType.WAITLIST)

    def test_penalty_paid(self):
        t = self.make_borrowing(self.student, utc(2024, 12, 28), utc(2025, 1, 1))
        with self.assertRaises(InvalidStatusTransitionException):
            borrowing_service.mark_penalty_paid(self.db, t.id, self.staff)

        borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff, now=utc(2025, 1, 2))
        self.assertTrue(borrowing_service.mark_penalty_paid(self.db, t.id, self.staff)["penaltyPaid"])


class OverdueTest(BorrowingTestCase):

    def test_running_penalty_before_return(self):
        now = utcnow()
        self.make_borrowing(self.student, now - timedelta(days=5), now - timedelta(hours=30))
        items, total = borrowing_service.list_borrowings(self.db, self.staff, 1, 20, None, None, None)

        self.assertEqual(total, 1)
        self.assertEqual(items[0]["status"], "overdue")
        self.assertEqual(items[0]["overdueDays"], 2)
        self.assertEqual(items[0]["penaltyAmount"], 10000)

    def test_status_filters_use_derived_state(self):
        now = utcnow()
        self.make_borrowing(self.student, now - timedelta(days=5), now - timedelta(days=1))
        other = self.make_equipment("Function Generator", "FG-001")
        self.make_borrowing(self.student, now - timedelta(days=1), now + timedelta(days=1), equipment=other)

        overdue, _ = borrowing_service.list_borrowings(self.db, self.staff, 1, 20, BorrowingStatus.OVERDUE,
                                                       None, None)
        active, _  = borrowing_service.list_borrowings(self.db, self.staff, 1, 20, BorrowingStatus.ACTIVE,
                                                       None, None)
        self.assertEqual([b["equipment"]["id"] for b in overdue], [self.equipment.id])
        self.assertEqual([b["equipment"]["id"] for b in active], [other.id])

    def test_sweep_persists_overdue(self):
        now = utcnow()
        late = self.make_borrowing(self.student, now - timedelta(days=5), now - timedelta(days=1))
        on_time = self.make_borrowing(self.student, now - timedelta(days=1), now + timedelta(days=1),
                                      equipment=self.make_equipment("Function Generator", "FG-001"))

        self.assertEqual(borrowing_service.mark_overdue(self.db, now=now), 1)
        self.assertEqual(self.reload(late).status, BorrowingStatus.OVERDUE)
        self.assertEqual(self.reload(on_time).status, BorrowingStatus.ACTIVE)
        self.assertEqual(borrowing_service.mark_overdue(self.db, now=now), 0)


class ExtensionTest(BorrowingTestCase):

    def setUp(self):
        super().setUp()
        self.now = utcnow()
        self.t = self.make_borrowing(self.student, self.now - timedelta(days=1), self.now + timedelta(days=2))

    def extend(self, days, user=None):
        new = self.t.expectedReturnDate + timedelta(days=days)
        return borrowing_service.extend_borrow(self.db, self.t.id, ExtensionRequest(newExpectedReturnDate=new),
                                               user or self.student, now=self.now)

    def test_extend_once_as_student(self):
        data = self.extend(3)
        self.assertEqual(data["extensionCount"], 1)
        self.assertEqual(self.reload(self.t).expectedReturnDate, self.now + timedelta(days=5))
        with self.assertRaises(ExtensionNotAllowedException):
            self.extend(1)

    def test_extension_length_cap(self):
        with self.assertRaises(ExtensionNotAllowedException):
            self.extend(8)

    def test_new_date_must_be_later(self):
        with self.assertRaises(InvalidDateRangeException):
            self.extend(0)

    def test_overdue_cannot_extend(self):
        with self.assertRaises(ExtensionNotAllowedException):
            borrowing_service.extend_borrow(
                self.db, self.t.id,
                ExtensionRequest(newExpectedReturnDate=self.now + timedelta(days=6)),
                self.student, now=self.now + timedelta(days=3),
            )

    def test_extension_must_not_overlap_others(self):
        end = self.t.expectedReturnDate
        self.make_reservation(self.lecturer, end + timedelta(days=1), end + timedelta(days=1, hours=2))
        with self.assertRaises(ReservationConflictException):
            self.extend(2)
        self.assertEqual(self.extend(1)["extensionCount"], 1)

    def test_only_owner_or_staff(self):
        with self.assertRaises(ForbiddenException):
            self.extend(1, user=self.lecturer)
        self.assertEqual(self.extend(1, user=self.staff)["extensionCount"], 1)


class BorrowingApiTest(BorrowingTestCase):

    def setUp(self):
        super().setUp()
        self.http = self.client()

    def test_request_approve_return(self):
        body = {"equipmentId": self.equipment.id, "borrowDate": at(9).isoformat(),
                "expectedReturnDate": at(12).isoformat()}
        res = self.http.post("/api/v1/borrowings", json=body, headers=self.auth(self.student))
        self.assertEqual(res.status_code, 201)
        bid = res.json()["data"]["id"]

        self.assertEqual(self.http.post(f"/api/v1/borrowings/{bid}/approve", json={},
                                        headers=self.auth(self.student)).status_code, 403)
        res = self.http.post(f"/api/v1/borrowings/{bid}/approve", json={}, headers=self.auth(self.staff))
        self.assertEqual(res.json()["data"]["status"], "active")

        res = self.http.post(f"/api/v1/borrowings/{bid}/return", json={"condition": "good"},
                             headers=self.auth(self.staff))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"]["status"], "returned")

    def test_reject_requires_note(self):
        t = self.make_borrowing(self.student, at(9), at(12), status=BorrowingStatus.PENDING)
        res = self.http.post(f"/api/v1/borrowings/{t.id}/reject", json={"note": "   "},
                             headers=self.auth(self.staff))
        self.assertEqual(res.status_code, 400)

    def test_other_users_borrowing_is_forbidden(self):
        t = self.make_borrowing(self.lecturer, at(9), at(12))
        res = self.http.get(f"/api/v1/borrowings/{t.id}", headers=self.auth(self.student))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(self.http.get(f"/api/v1/borrowings/{t.id}",
                                       headers=self.auth(self.staff)).status_code, 200)

    def test_limit_error_code(self):
        now = utcnow()
        body = {"equipmentId": self.equipment.id, "expectedReturnDate": (now + timedelta(days=20)).isoformat()}
        res = self.http.post("/api/v1/borrowings", json=body, headers=self.auth(self.student))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["code"], "BORROW_LIMIT_EXCEEDED")

    def test_mark_overdue_endpoint(self):
        now = utcnow()
        self.make_borrowing(self.student, now - timedelta(days=5), now - timedelta(days=1))
        self.assertEqual(self.http.post("/api/v1/borrowings/mark-overdue",
                                        headers=self.auth(self.student)).status_code, 403)
        res = self.http.post("/api/v1/borrowings/mark-overdue", headers=self.auth(self.staff))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"]["updated"], 1)
