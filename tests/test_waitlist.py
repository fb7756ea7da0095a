from datetime import timedelta
from unittest.mock import patch

from app.config import settings
from app.database import utcnow
from app.models.notification import NotificationType
from app.models.reservation import ReservationStatus
from app.models.role import RoleName
from app.models.waitlist_entry import WaitlistEntry, WaitlistPriority
from app.schemas.borrowing import BorrowReturnRequest
from app.schemas.maintenance import MaintenanceUpdateRequest
from app.schemas.reservation import ReservationUpdateRequest
from app.schemas.waitlist import WaitlistCreateRequest
from app.services.borrowing_service import borrowing_service
from app.services.maintenance_service import maintenance_service
from app.services.reservation_service import reservation_service
from app.services.waitlist_service import waitlist_service
from app.utils.exceptions import (
    DuplicateEntryException, ForbiddenException, ValidationException, EquipmentUnavailableException,
)
from tests.support import LabTestCase, at


class WaitlistTestCase(LabTestCase):

    def setUp(self):
        super().setUp()
        self.dina = self.make_user("Dina Putri", "dina@lab.test", RoleName.STUDENT)
        self.eko  = self.make_user("Eko Prasetyo", "eko@lab.test", RoleName.STUDENT)

    def enqueue(self, user, start, end, priority=WaitlistPriority.NORMAL, as_user=None):
        body = WaitlistCreateRequest(equipmentId=self.equipment.id, userId=user.id,
                                     requestedStartTime=start, requestedEndTime=end, priority=priority)
        data, position = waitlist_service.enqueue(self.db, body, as_user or user)
        return data["id"], position


class EnqueueTest(WaitlistTestCase):

    def test_position_follows_promotion_order(self):
        _, p1 = self.enqueue(self.student, at(10), at(11))
        _, p2 = self.enqueue(self.dina, at(10), at(11))
        _, p3 = self.enqueue(self.eko, at(10), at(11), WaitlistPriority.URGENT)
        self.assertEqual((p1, p2, p3), (1, 2, 1))

    def test_duplicate_unnotified_entry_rejected(self):
        self.enqueue(self.student, at(10), at(11))
        with self.assertRaises(DuplicateEntryException):
            self.enqueue(self.student, at(10), at(11), WaitlistPriority.HIGH)
        # A different interval is a different request
        self.enqueue(self.student, at(10), at(12))

    def test_can_rejoin_after_being_notified(self):
        entry_id, _ = self.enqueue(self.student, at(10), at(11))
        entry = self.db.get(WaitlistEntry, entry_id)
        entry.notifiedAt = utcnow()
        self.db.commit()
        self.enqueue(self.student, at(10), at(11))

    def test_cannot_enqueue_for_someone_else(self):
        with self.assertRaises(ForbiddenException):
            self.enqueue(self.dina, at(10), at(11), as_user=self.student)
        self.enqueue(self.dina, at(10), at(11), as_user=self.staff)

    def test_lost_equipment(self):
        self.equipment.lostAt = utcnow()
        self.db.commit()
        with self.assertRaises(EquipmentUnavailableException):
            self.enqueue(self.student, at(10), at(11))


class RemoveTest(WaitlistTestCase):

    def test_remove_by_id_and_by_pair(self):
        entry_id, _ = self.enqueue(self.student, at(10), at(11))
        self.enqueue(self.dina, at(10), at(11))
        self.enqueue(self.dina, at(12), at(13))

        self.assertEqual(waitlist_service.remove(self.db, self.student, entry_id, None, None), 1)
        self.assertEqual(waitlist_service.remove(self.db, self.dina, None, self.equipment.id, self.dina.id), 2)
        self.assertEqual(self.db.query(WaitlistEntry).count(), 0)

    def test_remove_requires_a_selector(self):
        with self.assertRaises(ValidationException):
            waitlist_service.remove(self.db, self.student, None, self.equipment.id, None)

    def test_cannot_remove_others(self):
        entry_id, _ = self.enqueue(self.dina, at(10), at(11))
        with self.assertRaises(ForbiddenException):
            waitlist_service.remove(self.db, self.student, entry_id, None, None)
        with self.assertRaises(ForbiddenException):
            waitlist_service.remove(self.db, self.student, None, self.equipment.id, self.dina.id)


class PromotionTest(WaitlistTestCase):

    @patch.object(settings, "WAITLIST_GRACE_MINUTES", 0)
    def test_priority_then_fifo(self):
        first_normal, _  = self.enqueue(self.student, at(10), at(11), WaitlistPriority.NORMAL)
        urgent, _        = self.enqueue(self.dina, at(10), at(11), WaitlistPriority.URGENT)
        second_normal, _ = self.enqueue(self.eko, at(10), at(11), WaitlistPriority.NORMAL)

        order = []
        for _ in range(3):
            order.append(waitlist_service.promote_next(self.db, self.equipment.id, at(10), at(11)).id)
            self.db.commit()

        self.assertEqual(order, [urgent, first_normal, second_normal])
        self.assertIsNone(waitlist_service.promote_next(self.db, self.equipment.id, at(10), at(11)))

    def test_cancellation_promotes_and_notifies(self):
        booking = self.make_reservation(self.lecturer, at(10), at(11))
        entry_id, _ = self.enqueue(self.student, at(10), at(11))

        reservation_service.cancel_reservation(self.db, booking.id, self.lecturer)

        self.assertIsNotNone(self.waitlist_entry(entry_id).notifiedAt)
        notes = self.notifications_for(self.student)
        self.assertEqual(notes[-1].type, NotificationType.WAITLIST)
        self.assertEqual(notes[-1].data["waitlistEntryId"], entry_id)

    def test_rejection_promotes(self):
        pending = self.make_reservation(self.lecturer, at(10), at(11), status=ReservationStatus.PENDING)
        entry_id, _ = self.enqueue(self.student, at(10), at(11))

        reservation_service.update_reservation(
            self.db, pending.id, ReservationUpdateRequest(status=ReservationStatus.REJECTED, note="Course lab only"),
            self.staff,
        )

        self.assertIsNotNone(self.waitlist_entry(entry_id).notifiedAt)
        self.assertEqual(self.notifications_for(self.student)[-1].type, NotificationType.WAITLIST)

    def test_overdue_return_frees_everything_after_now(self):
        now = utcnow()
        t = self.make_borrowing(self.lecturer, now - timedelta(days=3), now - timedelta(days=1))
        entry_id, _ = self.enqueue(self.student, at(10), at(11))
        self.assertIsNone(waitlist_service.promote_next(self.db, self.equipment.id, at(10), at(11)))

        borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff)

        self.assertIsNotNone(self.waitlist_entry(entry_id).notifiedAt)

    def test_overdue_return_with_nobody_waiting(self):
        now = utcnow()
        t = self.make_borrowing(self.lecturer, now - timedelta(days=3), now - timedelta(days=1))
        self.assertIsNone(waitlist_service.latest_waiting_end(self.db, self.equipment.id, now))
        data = borrowing_service.return_borrow(self.db, t.id, BorrowReturnRequest(), self.staff)
        self.assertEqual(data["status"], "returned")

    def test_maintenance_reschedule_frees_the_old_window(self):
        m = self.make_maintenance(at(9), 3)
        entry_id, _ = self.enqueue(self.student, at(10), at(11))

        maintenance_service.update_schedule(
            self.db, m.id, MaintenanceUpdateRequest(scheduledDate=at(14)), self.staff,
        )

        self.assertIsNotNone(self.waitlist_entry(entry_id).notifiedAt)

    def test_maintenance_edit_without_moving_keeps_waiting(self):
        m = self.make_maintenance(at(9), 3)
        entry_id, _ = self.enqueue(self.student, at(10), at(11))

        maintenance_service.update_schedule(self.db, m.id, MaintenanceUpdateRequest(title="Recalibration"),
                                            self.staff)

        self.assertIsNone(self.waitlist_entry(entry_id).notifiedAt)

    def test_promotion_never_creates_a_reservation(self):
        booking = self.make_reservation(self.lecturer, at(10), at(11))
        self.enqueue(self.student, at(10), at(11))
        reservation_service.cancel_reservation(self.db, booking.id, self.lecturer)
        self.db.expire_all()
        statuses = [r.status for r in self.equipment.reservations]
        self.assertEqual(statuses, [ReservationStatus.CANCELLED])

    def test_skips_candidates_whose_interval_is_still_taken(self):
        freed = self.make_reservation(self.lecturer, at(10), at(11))
        self.make_reservation(self.lecturer, at(11), at(12))
        straddling, _ = self.enqueue(self.dina, at(10, 30), at(11, 30), WaitlistPriority.URGENT)
        fitting, _    = self.enqueue(self.student, at(10), at(11), WaitlistPriority.LOW)
        elsewhere, _  = self.enqueue(self.eko, at(14), at(15), WaitlistPriority.URGENT)

        reservation_service.cancel_reservation(self.db, freed.id, self.lecturer)

        self.assertIsNone(self.waitlist_entry(straddling).notifiedAt)
        self.assertIsNotNone(self.waitlist_entry(fitting).notifiedAt)
        self.assertIsNone(self.waitlist_entry(elsewhere).notifiedAt)

    def test_grace_window_holds_the_slot(self):
        first, _  = self.enqueue(self.dina, at(10), at(11), WaitlistPriority.URGENT)
        second, _ = self.enqueue(self.student, at(10), at(11))
        now = utcnow()

        promoted = waitlist_service.promote_next(self.db, self.equipment.id, at(10), at(11), now=now)
        self.db.commit()
        self.assertEqual(promoted.id, first)

        still_held = now + timedelta(minutes=settings.WAITLIST_GRACE_MINUTES - 1)
        self.assertIsNone(waitlist_service.promote_next(self.db, self.equipment.id, at(10), at(11), now=still_held))

        lapsed = now + timedelta(minutes=settings.WAITLIST_GRACE_MINUTES + 1)
        promoted = waitlist_service.promote_next(self.db, self.equipment.id, at(10), at(11), now=lapsed)
        self.db.commit()
        self.assertEqual(promoted.id, second)

    def test_promotion_failure_does_not_fail_cancellation(self):
        booking = self.make_reservation(self.lecturer, at(10), at(11))
        self.enqueue(self.student, at(10), at(11))

        with patch.object(waitlist_service, "promote_next", side_effect=RuntimeError("mail queue down")):
            with self.assertLogs("app.services.waitlist_service", level="ERROR"):
                data = reservation_service.cancel_reservation(self.db, booking.id, self.lecturer)

        self.assertEqual(data["status"], "cancelled")
        self.assertEqual(self.reload(booking).status, ReservationStatus.CANCELLED)


class WaitlistApiTest(WaitlistTestCase):

    def setUp(self):
        super().setUp()
        self.http = self.client()

    def post(self, user, start, end, **extra):
        body = {"equipmentId": self.equipment.id, "requestedStartTime": start.isoformat(),
                "requestedEndTime": end.isoformat(), **extra}
        return self.http.post("/api/v1/waitlist", json=body, headers=self.auth(user))

    def test_join_list_and_leave(self):
        res = self.post(self.student, at(10), at(11), priority="high")
        self.assertEqual(res.status_code, 201)
        data = res.json()["data"]
        self.assertEqual(data["position"], 1)
        self.assertEqual(data["priority"], "high")

        self.post(self.dina, at(10), at(11))
        res = self.http.get("/api/v1/waitlist", headers=self.auth(self.student))
        self.assertEqual(res.json()["meta"]["total"], 1)
        res = self.http.get("/api/v1/waitlist", params={"equipment_id": self.equipment.id},
                            headers=self.auth(self.staff))
        self.assertEqual(res.json()["meta"]["total"], 2)

        res = self.http.delete("/api/v1/waitlist", params={"id": data["id"]}, headers=self.auth(self.student))
        self.assertEqual(res.json()["data"]["removed"], 1)

    def test_duplicate_is_409(self):
        self.post(self.student, at(10), at(11))
        res = self.post(self.student, at(10), at(11))
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()["code"], "DUPLICATE_ENTRY")

    def test_unknown_priority_is_400(self):
        res = self.post(self.student, at(10), at(11), priority="vip")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["code"], "VALIDATION_ERROR")
        self.assertEqual([d["field"] for d in res.json()["details"]], ["priority"])

    def test_delete_without_selector_is_400(self):
        res = self.http.delete("/api/v1/waitlist", headers=self.auth(self.student))
        self.assertEqual(res.status_code, 400)

    def test_manual_promotion_is_staff_only(self):
        self.post(self.student, at(10), at(11))
        body = {"equipmentId": self.equipment.id, "startTime": at(10).isoformat(), "endTime": at(11).isoformat()}

        self.assertEqual(self.http.post("/api/v1/waitlist/promote", json=body,
                                        headers=self.auth(self.student)).status_code, 403)
        res = self.http.post("/api/v1/waitlist/promote", json=body, headers=self.auth(self.staff))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["data"]["user"]["id"], self.student.id)
